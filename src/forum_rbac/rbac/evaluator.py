"""Evaluation of grant conditions against a request context."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo

from forum_rbac.config.constants import BYTES_PER_KB, DEFAULT_TIME_RANGE_TIMEZONE
from forum_rbac.db.base import as_utc, utc_now
from forum_rbac.rbac.conditions import (
    AccountAge,
    AllowedFileTypes,
    Categories,
    Condition,
    MaxFileSize,
    Own,
    RateLimit,
    TimeRange,
    UploadTypes,
    normalize_extension,
)
from forum_rbac.rbac.rate_limit import RateLimiter
from forum_rbac.rbac.types import GRANTED, DenialCode, PermissionContext, PermissionDecision

logger = logging.getLogger(__name__)


def _file_extension(file_type: str) -> str:
    """``"photo.JPG"``, ``".jpg"`` and ``"jpg"`` all give ``"jpg"``."""
    return normalize_extension(file_type.rsplit(".", 1)[-1])


def in_time_range(now_hhmm: str, start: str, end: str) -> bool:
    """Inclusive ``HH:MM`` window check by string comparison.

    A window with ``start > end`` admits no time of day.
    """
    return start <= now_hhmm <= end


class ConditionEvaluator:
    """Decides whether a conditional grant applies to a request.

    Conditions are checked in their fixed order and the first failure is
    reported. A condition whose context field is absent is skipped; the
    ``timeRange`` and ``rateLimit`` conditions need no context field.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        timezone: str = DEFAULT_TIME_RANGE_TIMEZONE,
    ) -> None:
        self._rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self._clock = clock
        self._tz: tzinfo = UTC if timezone.upper() == "UTC" else ZoneInfo(timezone)

    async def evaluate(
        self,
        user_id: int,
        slug: str,
        conditions: tuple[Condition, ...],
        context: PermissionContext,
    ) -> PermissionDecision:
        for condition in conditions:
            decision = await self._check(user_id, slug, condition, context)
            if not decision.granted:
                logger.debug("Condition %s denied '%s' for user %d: %s", condition.key, slug, user_id, decision.code)
                return decision
        return GRANTED

    async def _check(
        self,
        user_id: int,
        slug: str,
        condition: Condition,
        context: PermissionContext,
    ) -> PermissionDecision:
        match condition:
            case Own():
                if context.owner_id is not None and context.owner_id != user_id:
                    return PermissionDecision.deny(
                        DenialCode.NOT_OWNER, "You can only perform this action on your own content"
                    )

            case Categories(ids=ids):
                if context.category_id is not None and context.category_id not in ids:
                    return PermissionDecision.deny(
                        DenialCode.CATEGORY_NOT_ALLOWED, "You are not allowed to perform this action in this category"
                    )

            case AccountAge(days=days):
                if context.user_created_at is not None:
                    age_days = (self._clock() - as_utc(context.user_created_at)).days
                    if age_days < days:
                        return PermissionDecision.deny(
                            DenialCode.ACCOUNT_TOO_NEW,
                            f"Your account must be at least {days} days old to perform this action",
                        )

            case TimeRange(start=start, end=end):
                now_hhmm = self._clock().astimezone(self._tz).strftime("%H:%M")
                if not in_time_range(now_hhmm, start, end):
                    return PermissionDecision.deny(
                        DenialCode.TIME_NOT_ALLOWED, f"This action is only allowed between {start} and {end}"
                    )

            case RateLimit(count=count, period=period):
                if not await self._rate_limiter.hit(user_id, slug, condition):
                    return PermissionDecision.deny(
                        DenialCode.RATE_LIMITED,
                        f"Too many requests: at most {count} per {period.value}, please try again later",
                    )

            case MaxFileSize(kb=kb):
                if context.file_size is not None and context.file_size / BYTES_PER_KB > kb:
                    return PermissionDecision.deny(
                        DenialCode.FILE_TOO_LARGE, f"File size exceeds the limit of {kb} KB"
                    )

            case AllowedFileTypes(extensions=extensions):
                if context.file_type is not None and _file_extension(context.file_type) not in extensions:
                    return PermissionDecision.deny(
                        DenialCode.FILE_TYPE_NOT_ALLOWED,
                        f"File type not allowed, allowed types: {', '.join(sorted(extensions))}",
                    )

            case UploadTypes(tags=tags):
                if context.upload_type is not None and context.upload_type not in tags:
                    return PermissionDecision.deny(
                        DenialCode.UPLOAD_TYPE_NOT_ALLOWED, f"Uploading to '{context.upload_type}' is not allowed"
                    )

        return GRANTED
