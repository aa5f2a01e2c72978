"""Account bans: issue, lift and check, with expired bans lifted on read."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.cache.service import PermissionCache
from forum_rbac.db.base import as_utc, utc_now
from forum_rbac.db.repository import RBACRepository
from forum_rbac.exceptions import UserNotFoundError
from forum_rbac.rbac.types import NOT_BANNED, BanStatus

logger = logging.getLogger(__name__)


class BanService:
    """Bans stored on the user row.

    A ban is independent of roles: a banned user keeps their assignments and
    gets them back unchanged when the ban is lifted or runs out.
    """

    def __init__(
        self,
        repository: RBACRepository,
        cache: PermissionCache,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._clock = clock

    async def ban_user(
        self,
        user_id: int,
        session: AsyncSession,
        *,
        until: datetime | None = None,
        reason: str | None = None,
        banned_by: int | None = None,
    ) -> None:
        """Ban a user until *until*, or permanently when it is ``None``."""
        user = await self._repo.get_user(user_id, session)
        if user is None:
            raise UserNotFoundError(user_id)

        await self._repo.set_user_ban(user, session, until=until, reason=reason, banned_by=banned_by)
        await self._cache.invalidate_user(user_id)
        logger.info("Banned user %d (until=%s, by=%s)", user_id, until, banned_by)

    async def unban_user(self, user_id: int, session: AsyncSession) -> bool:
        """Lift a ban. Returns ``False`` if the user is unknown or not banned."""
        user = await self._repo.get_user(user_id, session)
        if user is None or not await self._repo.clear_user_ban(user, session):
            return False

        await self._cache.invalidate_user(user_id)
        logger.info("Unbanned user %d", user_id)
        return True

    async def check_ban_status(self, user_id: int, session: AsyncSession) -> BanStatus:
        """Return the user's current ban; a ban whose end has passed is lifted first."""
        user = await self._repo.get_user(user_id, session)
        if user is None or not user.is_banned:
            return NOT_BANNED

        if user.banned_until is not None and as_utc(user.banned_until) <= self._clock():
            logger.info("Ban of user %d expired at %s", user_id, user.banned_until)
            await self.unban_user(user_id, session)
            return NOT_BANNED

        until = as_utc(user.banned_until) if user.banned_until is not None else None
        return BanStatus(is_banned=True, reason=user.banned_reason, until=until)
