"""Engine configuration."""

from forum_rbac.config.constants import DEFAULT_DATABASE_URL
from forum_rbac.config.database import DatabaseSettings
from forum_rbac.config.settings import RBACSettings, get_settings

__all__ = [
    "DEFAULT_DATABASE_URL",
    "DatabaseSettings",
    "RBACSettings",
    "get_settings",
]
