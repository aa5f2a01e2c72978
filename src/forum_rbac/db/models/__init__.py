"""Re-export all model classes."""

from forum_rbac.db.models.rbac import Permission, Role, RolePermission, UserRole
from forum_rbac.db.models.user import User

__all__ = [
    "Permission",
    "Role",
    "RolePermission",
    "User",
    "UserRole",
]
