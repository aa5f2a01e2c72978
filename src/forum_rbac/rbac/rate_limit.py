"""Per-user, per-action rate limiting for ``rateLimit`` conditions."""

import logging

from forum_rbac.cache.backends import CacheBackend, NullCache
from forum_rbac.cache.service import rate_limit_key
from forum_rbac.rbac.conditions import RateLimit

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window counters stored in the cache.

    A use is allowed while the window's count is below the limit, and only
    allowed uses are counted. The first counted use creates the counter with
    the limit's period as its expiry; later uses do not move the expiry.

    Without a cache (``NullCache``) every check is allowed.
    """

    def __init__(self, cache: CacheBackend | None = None) -> None:
        self._cache: CacheBackend = cache if cache is not None else NullCache()

    async def hit(self, user_id: int, action: str, limit: RateLimit) -> bool:
        """Return whether *user_id* may use *action* now, counting the use if so."""
        key = rate_limit_key(user_id, action)
        allowed = await self._cache.increment_below(key, limit.count, limit.period.seconds)
        if allowed is None:
            return True
        if not allowed:
            logger.info(
                "Rate limit reached for user %d on '%s' (%d/%s)", user_id, action, limit.count, limit.period.value
            )
        return allowed
