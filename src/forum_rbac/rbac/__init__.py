"""Permission engine: role resolution, grant aggregation and condition checks."""

from forum_rbac.rbac.admin import GrantSpec, RoleAdminService
from forum_rbac.rbac.bans import BanService
from forum_rbac.rbac.bootstrap import RBACBootstrapper, SeedReport, SyncReport
from forum_rbac.rbac.evaluator import ConditionEvaluator
from forum_rbac.rbac.factory import RBACComponents, build_rbac
from forum_rbac.rbac.rate_limit import RateLimiter
from forum_rbac.rbac.resolver import RoleResolver
from forum_rbac.rbac.service import PermissionService, merge_grants
from forum_rbac.rbac.types import (
    BanStatus,
    CategoryPermissions,
    DenialCode,
    PermissionContext,
    PermissionDecision,
    PermissionGrant,
    UserRoleInfo,
)

__all__ = [
    "BanService",
    "BanStatus",
    "CategoryPermissions",
    "ConditionEvaluator",
    "DenialCode",
    "GrantSpec",
    "PermissionContext",
    "PermissionDecision",
    "PermissionGrant",
    "PermissionService",
    "RBACBootstrapper",
    "RBACComponents",
    "RateLimiter",
    "RoleAdminService",
    "RoleResolver",
    "SeedReport",
    "SyncReport",
    "UserRoleInfo",
    "build_rbac",
    "merge_grants",
]
