"""Permission service: aggregated permission sets and permission checks."""

import logging
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.cache.service import PermissionCache, user_permissions_key
from forum_rbac.config.constants import ADMIN_ROLE_SLUG, MODERATOR_ROLE_SLUG
from forum_rbac.db.repository import GrantRow, RBACRepository
from forum_rbac.rbac.conditions import Categories, parse_conditions
from forum_rbac.rbac.evaluator import ConditionEvaluator
from forum_rbac.rbac.resolver import RoleResolver
from forum_rbac.rbac.types import (
    GRANTED,
    CategoryPermissions,
    DenialCode,
    PermissionContext,
    PermissionDecision,
    PermissionGrant,
    UserAccessProfile,
)

logger = logging.getLogger(__name__)

_EMPTY_CONTEXT = PermissionContext()


def merge_grants(rows: Iterable[GrantRow]) -> list[PermissionGrant]:
    """Collapse grants of the same permission from several roles into one.

    - An unconditional grant beats any conditional one, whatever the role
      priorities: holding an extra role never restricts a user further.
    - Among conditional grants, the highest-priority role's conditions are
      used as-is; conditions of different roles are not combined.
    - A grant whose stored conditions cannot be parsed is dropped.
    """
    winners: dict[str, tuple[GrantRow, PermissionGrant]] = {}

    for row in rows:
        try:
            conditions = parse_conditions(row.conditions)
        except ValueError as exc:
            logger.warning(
                "Skipping grant of '%s' from role %d: unreadable conditions (%s)", row.slug, row.role_id, exc
            )
            continue
        grant = PermissionGrant(
            slug=row.slug,
            module=row.module,
            action=row.action,
            role_id=row.role_id,
            conditions=conditions,
        )
        current = winners.get(row.slug)
        if current is None:
            winners[row.slug] = (row, grant)
            continue

        current_row, current_grant = current
        if not current_grant.is_conditional:
            continue
        if not grant.is_conditional or row.role_priority > current_row.role_priority:
            winners[row.slug] = (row, grant)

    return [grant for _, grant in winners.values()]


class PermissionService:
    """Checks what a user may do.

    Construct one instance at startup and pass it to whoever needs
    permission checks::

        service = PermissionService(RBACRepository(), PermissionCache(RedisCache(url)))
        decision = await service.check_permission_with_reason(
            user_id, "topic.update", session, PermissionContext(owner_id=topic.user_id)
        )

    Holders of the ``admin`` role are granted everything without looking at
    their permission set.
    """

    def __init__(
        self,
        repository: RBACRepository,
        cache: PermissionCache | None = None,
        *,
        resolver: RoleResolver | None = None,
        evaluator: ConditionEvaluator | None = None,
        admin_role_slug: str = ADMIN_ROLE_SLUG,
    ) -> None:
        self._repo = repository
        self._cache = cache if cache is not None else PermissionCache()
        self._resolver = resolver if resolver is not None else RoleResolver(repository, self._cache)
        self._evaluator = evaluator if evaluator is not None else ConditionEvaluator()
        self._admin_role_slug = admin_role_slug

    @property
    def resolver(self) -> RoleResolver:
        return self._resolver

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def get_user_permissions(self, user_id: int, session: AsyncSession) -> list[PermissionGrant]:
        """Return the user's deduplicated permission set across all effective and inherited roles."""

        async def _load() -> list[dict[str, object]]:
            role_ids = await self._resolver.get_all_role_ids_with_inheritance(user_id, session)
            if not role_ids:
                return []
            rows = await self._repo.get_grants_for_roles(role_ids, session)
            return [grant.to_dict() for grant in merge_grants(rows)]

        data = await self._cache.remember(user_permissions_key(user_id), _load)
        return [PermissionGrant.from_dict(item) for item in data]

    async def get_user_permission_slugs(self, user_id: int, session: AsyncSession) -> set[str]:
        return {grant.slug for grant in await self.get_user_permissions(user_id, session)}

    async def is_admin(self, user_id: int, session: AsyncSession) -> bool:
        return await self._resolver.has_role(user_id, self._admin_role_slug, session)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_permission_with_reason(
        self,
        user_id: int,
        slug: str,
        session: AsyncSession,
        context: PermissionContext | None = None,
    ) -> PermissionDecision:
        """Decide whether *user_id* may use *slug* in *context*, with the denial reason."""
        if await self.is_admin(user_id, session):
            return GRANTED

        grant = next((g for g in await self.get_user_permissions(user_id, session) if g.slug == slug), None)
        if grant is None:
            logger.debug("User %d has no '%s' permission", user_id, slug)
            return PermissionDecision.deny(DenialCode.NO_PERMISSION, f"Permission required: {slug}")

        if grant.conditions is None:
            return GRANTED

        return await self._evaluator.evaluate(user_id, slug, grant.conditions, context or _EMPTY_CONTEXT)

    async def has_permission(
        self,
        user_id: int,
        slug: str,
        session: AsyncSession,
        context: PermissionContext | None = None,
    ) -> bool:
        """Return ``True`` if *user_id* may use *slug* in *context*."""
        decision = await self.check_permission_with_reason(user_id, slug, session, context)
        return decision.granted

    async def has_any_permission(self, user_id: int, slugs: Iterable[str], session: AsyncSession) -> bool:
        """Coarse check: does the user hold at least one of *slugs*? Conditions are not evaluated."""
        if await self.is_admin(user_id, session):
            return True
        held = await self.get_user_permission_slugs(user_id, session)
        return any(slug in held for slug in slugs)

    async def has_all_permissions(self, user_id: int, slugs: Iterable[str], session: AsyncSession) -> bool:
        """Coarse check: does the user hold every one of *slugs*? Conditions are not evaluated."""
        if await self.is_admin(user_id, session):
            return True
        held = await self.get_user_permission_slugs(user_id, session)
        return all(slug in held for slug in slugs)

    async def get_category_permissions(
        self, user_id: int, category_id: int, session: AsyncSession
    ) -> CategoryPermissions:
        """Summarize what the user may do in one category, looking only at ``categories`` conditions."""
        if await self.is_admin(user_id, session):
            return CategoryPermissions(can_view=True, can_create=True, can_reply=True, can_moderate=True)

        grants = {g.slug: g for g in await self.get_user_permissions(user_id, session)}

        def _allowed(slug: str) -> bool:
            grant = grants.get(slug)
            if grant is None:
                return False
            for condition in grant.conditions or ():
                if isinstance(condition, Categories) and condition.ids:
                    return category_id in condition.ids
            return True

        return CategoryPermissions(
            can_view=_allowed("topic.read") or _allowed("category.read"),
            can_create=_allowed("topic.create"),
            can_reply=_allowed("post.create"),
            can_moderate=_allowed("topic.manage") or _allowed("post.manage"),
        )

    async def describe_user(self, user_id: int, session: AsyncSession) -> UserAccessProfile:
        """Return the user's roles, permission slugs and display role."""
        roles = await self._resolver.get_user_roles(user_id, session)
        permissions = await self.get_user_permissions(user_id, session)
        slugs = {role.slug for role in roles}
        return UserAccessProfile(
            user_id=user_id,
            roles=roles,
            permissions=[p.slug for p in permissions],
            display_role=await self._resolver.get_display_role(user_id, session),
            is_admin=self._admin_role_slug in slugs,
            is_moderator=bool(slugs & {self._admin_role_slug, MODERATOR_ROLE_SLUG}),
        )

    async def clear_user_permission_cache(self, user_id: int) -> None:
        await self._cache.invalidate_user(user_id)
