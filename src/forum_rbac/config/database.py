"""Connection settings for the roles/permissions store."""

from pydantic import field_validator
from pydantic_settings import BaseSettings

from forum_rbac.config.constants import DEFAULT_DATABASE_URL

_SYNC_DRIVER_PREFIXES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}


class DatabaseSettings(BaseSettings):
    """Store connection settings read from ``DATABASE_URL`` and friends.

    ``pool_size``/``max_overflow`` only apply when ``use_null_pool`` is off.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    use_null_pool: bool = True
    pool_pre_ping: bool = True
    pool_size: int = 5
    max_overflow: int = 10

    model_config = {"env_prefix": ""}

    @field_validator("database_url")
    @classmethod
    def _async_driver(cls, value: str) -> str:
        """Rewrite plain Postgres URLs to the asyncpg driver."""
        for prefix, replacement in _SYNC_DRIVER_PREFIXES.items():
            if value.startswith(prefix):
                return replacement + value[len(prefix) :]
        return value
