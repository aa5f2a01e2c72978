"""Permission cache: memoized role/permission sets keyed per user."""

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from forum_rbac.cache.backends import CacheBackend, NullCache
from forum_rbac.config.constants import (
    DEFAULT_PERMISSION_CACHE_TTL_SECONDS,
    RATE_LIMIT_CACHE_KEY,
    USER_PERMISSIONS_CACHE_KEY,
    USER_ROLES_CACHE_KEY,
)

logger = logging.getLogger(__name__)


def user_roles_key(user_id: int) -> str:
    return USER_ROLES_CACHE_KEY.format(user_id=user_id)


def user_permissions_key(user_id: int) -> str:
    return USER_PERMISSIONS_CACHE_KEY.format(user_id=user_id)


def rate_limit_key(user_id: int, action: str) -> str:
    return RATE_LIMIT_CACHE_KEY.format(user_id=user_id, action=action)


class PermissionCache:
    """Wraps a :class:`CacheBackend` with the engine's key scheme and TTL.

    Entries are written at most once per TTL window per key and are deleted
    whenever a user's role assignments or the grants of their roles change.
    A concurrent reader may repopulate an entry right after invalidation;
    that stale copy lives until the TTL expires.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        *,
        ttl_seconds: int = DEFAULT_PERMISSION_CACHE_TTL_SECONDS,
    ) -> None:
        self._backend: CacheBackend = backend if backend is not None else NullCache()
        self._ttl = ttl_seconds

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    async def remember(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value at *key*, computing and storing it on a miss."""
        cached = await self._backend.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        value = await loader()
        if value is not None:
            await self._backend.set(key, value, self._ttl)
        return value

    async def invalidate_user(self, user_id: int) -> None:
        """Drop the cached roles and permissions of one user."""
        await self._backend.invalidate([user_roles_key(user_id), user_permissions_key(user_id)])

    async def invalidate_users(self, user_ids: Iterable[int]) -> None:
        """Drop the cached roles and permissions of several users in one call."""
        keys = [key for uid in set(user_ids) for key in (user_roles_key(uid), user_permissions_key(uid))]
        if keys:
            logger.info("Invalidating permission cache for %d users", len(keys) // 2)
            await self._backend.invalidate(keys)
