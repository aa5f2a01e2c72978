"""Tests for parsing and dumping grant conditions."""

import pytest

from forum_rbac.rbac.conditions import (
    AccountAge,
    AllowedFileTypes,
    Categories,
    MaxFileSize,
    Own,
    RateLimit,
    RatePeriod,
    TimeRange,
    UploadTypes,
    dump_conditions,
    normalize_conditions,
    parse_conditions,
)


class TestParseConditions:
    def test_none_is_unconditional(self) -> None:
        assert parse_conditions(None) is None

    def test_empty_object_is_unconditional(self) -> None:
        assert parse_conditions({}) is None

    def test_own_false_is_no_restriction(self) -> None:
        assert parse_conditions({"own": False}) is None

    def test_unknown_keys_only_is_unconditional(self) -> None:
        assert parse_conditions({"minPosts": 10}) is None

    def test_variants_follow_evaluation_order(self) -> None:
        parsed = parse_conditions(
            {
                "uploadTypes": ["avatar"],
                "rateLimit": {"count": 3, "period": "minute"},
                "categories": [2, 1],
                "own": True,
            }
        )
        assert parsed == (
            Own(),
            Categories(ids=frozenset({1, 2})),
            RateLimit(count=3, period=RatePeriod.MINUTE),
            UploadTypes(tags=frozenset({"avatar"})),
        )

    def test_all_variants(self) -> None:
        parsed = parse_conditions(
            {
                "accountAge": 7,
                "timeRange": {"start": "09:00", "end": "18:00"},
                "maxFileSize": 512,
                "allowedFileTypes": [".JPG", "png"],
            }
        )
        assert parsed == (
            AccountAge(days=7),
            TimeRange(start="09:00", end="18:00"),
            MaxFileSize(kb=512),
            AllowedFileTypes(extensions=frozenset({"jpg", "png"})),
        )

    def test_malformed_rate_limit_raises(self) -> None:
        with pytest.raises(ValueError, match="rateLimit"):
            parse_conditions({"rateLimit": {"count": 3}})

    def test_unknown_period_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_conditions({"rateLimit": {"count": 3, "period": "week"}})

    def test_bad_time_format_raises(self) -> None:
        with pytest.raises(ValueError, match="HH:MM"):
            parse_conditions({"timeRange": {"start": "9:00", "end": "18:00"}})


class TestDumpConditions:
    def test_dump_none(self) -> None:
        assert dump_conditions(None) is None

    def test_dump_is_sorted_and_canonical(self) -> None:
        dumped = dump_conditions(
            (
                Own(),
                Categories(ids=frozenset({3, 1})),
                RateLimit(count=5, period=RatePeriod.DAY),
                AllowedFileTypes(extensions=frozenset({"png", "gif"})),
            )
        )
        assert dumped == {
            "own": True,
            "categories": [1, 3],
            "rateLimit": {"count": 5, "period": "day"},
            "allowedFileTypes": ["gif", "png"],
        }

    def test_normalize_drops_noise(self) -> None:
        assert normalize_conditions({"own": False, "accountAge": None}) is None
        assert normalize_conditions({"allowedFileTypes": [".PNG"]}) == {"allowedFileTypes": ["png"]}


class TestRatePeriod:
    @pytest.mark.parametrize(
        ("period", "seconds"),
        [(RatePeriod.MINUTE, 60), (RatePeriod.HOUR, 3600), (RatePeriod.DAY, 86400)],
    )
    def test_seconds(self, period: RatePeriod, seconds: int) -> None:
        assert period.seconds == seconds
