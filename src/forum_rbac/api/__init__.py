"""FastAPI adapter for the permission engine."""

from forum_rbac.api.dependencies import PermissionDependencyFactory, denial_to_http
from forum_rbac.api.schemas import AccessProfileResponse, DenialDetail, RolePermissionGrant

__all__ = [
    "AccessProfileResponse",
    "DenialDetail",
    "PermissionDependencyFactory",
    "RolePermissionGrant",
    "denial_to_http",
]
