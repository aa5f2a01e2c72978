"""RBAC engine settings loaded from environment variables."""

import functools

from pydantic_settings import BaseSettings

from forum_rbac.config.constants import (
    ADMIN_ROLE_SLUG,
    DEFAULT_PERMISSION_CACHE_TTL_SECONDS,
    DEFAULT_ROLE_SLUG,
    DEFAULT_TIME_RANGE_TIMEZONE,
)


class RBACSettings(BaseSettings):
    """Permission engine configuration."""

    # Cache
    CACHE_BACKEND: str = ""  # "redis", "memory", "none", or "" (redis when REDIS_URL is set, else none)
    REDIS_URL: str = ""
    PERMISSION_CACHE_TTL_SECONDS: int = DEFAULT_PERMISSION_CACHE_TTL_SECONDS

    # Condition evaluation
    TIME_RANGE_TIMEZONE: str = DEFAULT_TIME_RANGE_TIMEZONE

    # Well-known roles
    ADMIN_ROLE_SLUG: str = ADMIN_ROLE_SLUG
    DEFAULT_ROLE_SLUG: str = DEFAULT_ROLE_SLUG

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = {"env_prefix": ""}


@functools.lru_cache(maxsize=1)
def get_settings() -> RBACSettings:
    """Return cached engine settings singleton."""
    return RBACSettings()
