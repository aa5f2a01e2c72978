"""Database package -- convenience re-exports.

Importing this module registers all models with Base.metadata.
"""

from forum_rbac.db.base import Base
from forum_rbac.db.models import Permission, Role, RolePermission, User, UserRole
from forum_rbac.db.repository import GrantRow, RBACRepository
from forum_rbac.db.session import DatabaseManager

__all__ = [
    # Base
    "Base",
    # Models
    "Permission",
    "Role",
    "RolePermission",
    "User",
    "UserRole",
    # Session
    "DatabaseManager",
    # Operations
    "GrantRow",
    "RBACRepository",
]
