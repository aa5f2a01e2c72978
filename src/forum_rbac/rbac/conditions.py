"""Grant conditions as a closed set of variants.

A role's grant of a permission may be narrowed by conditions. They are stored
as a JSON object on ``role_permissions.conditions``::

    {"own": true, "categories": [1, 2], "rateLimit": {"count": 5, "period": "day"}}

and handled in code as a tuple of the frozen dataclasses below, ordered the
way the evaluator checks them.
"""

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class RatePeriod(enum.StrEnum):
    """Rate-limit window lengths."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return _PERIOD_SECONDS[self]


_PERIOD_SECONDS: dict[RatePeriod, int] = {
    RatePeriod.MINUTE: 60,
    RatePeriod.HOUR: 3600,
    RatePeriod.DAY: 86400,
}


@dataclass(frozen=True, slots=True)
class Own:
    """Only the resource owner may act."""

    key = "own"


@dataclass(frozen=True, slots=True)
class Categories:
    """Only inside the listed category ids."""

    ids: frozenset[int]
    key = "categories"


@dataclass(frozen=True, slots=True)
class AccountAge:
    """Account must be at least ``days`` old."""

    days: int
    key = "accountAge"


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Only between ``start`` and ``end`` (``HH:MM``, inclusive)."""

    start: str
    end: str
    key = "timeRange"


@dataclass(frozen=True, slots=True)
class RateLimit:
    """At most ``count`` uses per ``period``."""

    count: int
    period: RatePeriod
    key = "rateLimit"


@dataclass(frozen=True, slots=True)
class MaxFileSize:
    """Uploaded file must not exceed ``kb`` kilobytes."""

    kb: int
    key = "maxFileSize"


@dataclass(frozen=True, slots=True)
class AllowedFileTypes:
    """Uploaded file extension must be in ``extensions`` (lower-case, no dot)."""

    extensions: frozenset[str]
    key = "allowedFileTypes"


@dataclass(frozen=True, slots=True)
class UploadTypes:
    """Upload target must be one of ``tags`` (avatar, topic, ...)."""

    tags: frozenset[str]
    key = "uploadTypes"


Condition = Own | Categories | AccountAge | TimeRange | RateLimit | MaxFileSize | AllowedFileTypes | UploadTypes

# Evaluation order; the first failing condition decides the denial.
CONDITION_ORDER: tuple[type[Condition], ...] = (
    Own,
    Categories,
    AccountAge,
    TimeRange,
    RateLimit,
    MaxFileSize,
    AllowedFileTypes,
    UploadTypes,
)

CONDITION_KEYS: frozenset[str] = frozenset(cls.key for cls in CONDITION_ORDER)


def normalize_extension(ext: str) -> str:
    return ext.strip().lower().lstrip(".")


def _parse_one(key: str, value: Any) -> Condition | None:
    match key:
        case "own":
            return Own() if value else None
        case "categories":
            return Categories(ids=frozenset(int(v) for v in value))
        case "accountAge":
            return AccountAge(days=int(value))
        case "timeRange":
            start, end = str(value["start"]), str(value["end"])
            if not (_HHMM.match(start) and _HHMM.match(end)):
                raise ValueError(f"timeRange bounds must be HH:MM, got {start!r}-{end!r}")
            return TimeRange(start=start, end=end)
        case "rateLimit":
            return RateLimit(count=int(value["count"]), period=RatePeriod(value["period"]))
        case "maxFileSize":
            return MaxFileSize(kb=int(value))
        case "allowedFileTypes":
            return AllowedFileTypes(extensions=frozenset(normalize_extension(str(v)) for v in value))
        case "uploadTypes":
            return UploadTypes(tags=frozenset(str(v) for v in value))
    logger.debug("Ignoring unknown condition key '%s'", key)
    return None


def parse_conditions(raw: dict[str, Any] | None) -> tuple[Condition, ...] | None:
    """Convert a stored conditions object into ordered variants.

    Returns ``None`` (an unconditional grant) when *raw* is ``None`` or holds
    no restricting condition. Raises ``ValueError`` on malformed values.
    """
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"Conditions must be an object, got {type(raw).__name__}")

    parsed: dict[type, Condition] = {}
    for key, value in raw.items():
        if value is None:
            continue
        try:
            condition = _parse_one(key, value)
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Malformed '{key}' condition: {value!r}") from exc
        if condition is not None:
            parsed[type(condition)] = condition

    if not parsed:
        return None
    return tuple(parsed[cls] for cls in CONDITION_ORDER if cls in parsed)


def dump_conditions(conditions: tuple[Condition, ...] | None) -> dict[str, Any] | None:
    """Convert variants back into the stored JSON object."""
    if not conditions:
        return None

    out: dict[str, Any] = {}
    for condition in conditions:
        match condition:
            case Own():
                out["own"] = True
            case Categories(ids=ids):
                out["categories"] = sorted(ids)
            case AccountAge(days=days):
                out["accountAge"] = days
            case TimeRange(start=start, end=end):
                out["timeRange"] = {"start": start, "end": end}
            case RateLimit(count=count, period=period):
                out["rateLimit"] = {"count": count, "period": period.value}
            case MaxFileSize(kb=kb):
                out["maxFileSize"] = kb
            case AllowedFileTypes(extensions=extensions):
                out["allowedFileTypes"] = sorted(extensions)
            case UploadTypes(tags=tags):
                out["uploadTypes"] = sorted(tags)
    return out


def normalize_conditions(raw: dict[str, Any] | None) -> dict[str, Any] | None:
    """Validate and canonicalize a conditions object before it is stored."""
    return dump_conditions(parse_conditions(raw))
