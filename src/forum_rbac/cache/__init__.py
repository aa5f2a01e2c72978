"""Cache backends and the permission cache."""

import logging

from forum_rbac.cache.backends import CacheBackend, MemoryCache, NullCache
from forum_rbac.cache.redis import RedisCache
from forum_rbac.cache.service import PermissionCache
from forum_rbac.config.settings import RBACSettings

logger = logging.getLogger(__name__)


def build_cache_backend(settings: RBACSettings) -> CacheBackend:
    """Pick the cache backend named by ``CACHE_BACKEND`` (or implied by ``REDIS_URL``)."""
    mode = settings.CACHE_BACKEND.strip().lower()
    if not mode:
        mode = "redis" if settings.REDIS_URL else "none"

    if mode == "redis":
        if not settings.REDIS_URL:
            raise ValueError("CACHE_BACKEND=redis requires REDIS_URL")
        logger.info("Using Redis permission cache")
        return RedisCache(settings.REDIS_URL)
    if mode == "memory":
        logger.info("Using in-process permission cache")
        return MemoryCache()
    if mode == "none":
        logger.info("Permission cache disabled")
        return NullCache()
    raise ValueError(f"Unknown CACHE_BACKEND: {mode}")


def build_permission_cache(settings: RBACSettings) -> PermissionCache:
    return PermissionCache(build_cache_backend(settings), ttl_seconds=settings.PERMISSION_CACHE_TTL_SECONDS)


__all__ = [
    "CacheBackend",
    "MemoryCache",
    "NullCache",
    "PermissionCache",
    "RedisCache",
    "build_cache_backend",
    "build_permission_cache",
]
