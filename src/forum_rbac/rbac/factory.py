"""Wiring of the RBAC services from settings."""

from dataclasses import dataclass

from forum_rbac.cache import build_permission_cache
from forum_rbac.cache.service import PermissionCache
from forum_rbac.config.settings import RBACSettings, get_settings
from forum_rbac.db.repository import RBACRepository
from forum_rbac.rbac.admin import RoleAdminService
from forum_rbac.rbac.bans import BanService
from forum_rbac.rbac.bootstrap import RBACBootstrapper
from forum_rbac.rbac.evaluator import ConditionEvaluator
from forum_rbac.rbac.rate_limit import RateLimiter
from forum_rbac.rbac.resolver import RoleResolver
from forum_rbac.rbac.service import PermissionService


@dataclass(frozen=True)
class RBACComponents:
    """Services sharing one repository and one cache."""

    cache: PermissionCache
    permissions: PermissionService
    admin: RoleAdminService
    bans: BanService
    bootstrap: RBACBootstrapper


def build_rbac(settings: RBACSettings | None = None, *, cache: PermissionCache | None = None) -> RBACComponents:
    """Build the permission, admin, ban and bootstrap services.

    Pass *cache* to share an existing cache (tests pass a memory-backed one).
    """
    settings = settings or get_settings()
    cache = cache if cache is not None else build_permission_cache(settings)
    repository = RBACRepository()

    resolver = RoleResolver(repository, cache)
    evaluator = ConditionEvaluator(RateLimiter(cache.backend), timezone=settings.TIME_RANGE_TIMEZONE)
    service = PermissionService(
        repository,
        cache,
        resolver=resolver,
        evaluator=evaluator,
        admin_role_slug=settings.ADMIN_ROLE_SLUG,
    )
    return RBACComponents(
        cache=cache,
        permissions=service,
        admin=RoleAdminService(repository, cache, resolver, fallback_role_slug=settings.DEFAULT_ROLE_SLUG),
        bans=BanService(repository, cache),
        bootstrap=RBACBootstrapper(
            repository,
            cache,
            default_role_slug=settings.DEFAULT_ROLE_SLUG,
            admin_role_slug=settings.ADMIN_ROLE_SLUG,
        ),
    )
