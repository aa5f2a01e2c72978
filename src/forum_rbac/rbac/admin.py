"""Role administration: mutations that keep the permission cache consistent.

Every write here invalidates the cached roles/permissions of each user it can
affect. For changes to a role definition or its grants that includes holders
of roles inheriting from it.

Invalidation happens inside the caller's transaction and nothing here reads
through the cache. A caller that checks permissions in the same transaction
before committing should call ``PermissionCache.invalidate_user`` again once
the transaction has ended, so entries built from uncommitted rows are dropped.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.cache.service import PermissionCache
from forum_rbac.config.constants import DEFAULT_ROLE_SLUG
from forum_rbac.db.base import utc_now
from forum_rbac.db.models.rbac import Permission, Role
from forum_rbac.db.repository import RBACRepository
from forum_rbac.exceptions import (
    PermissionNotFoundError,
    PermissionValidationError,
    RoleNotFoundError,
    RoleValidationError,
    UserNotFoundError,
)
from forum_rbac.rbac.conditions import normalize_conditions
from forum_rbac.rbac.resolver import RoleResolver

logger = logging.getLogger(__name__)

# Role columns an update may touch.
_ROLE_FIELDS = frozenset(
    {"slug", "name", "description", "color", "icon", "parent_id", "is_default", "is_displayed", "priority"}
)
# Permission columns a system permission keeps fixed.
_PERMISSION_CORE_FIELDS = frozenset({"slug", "module", "action", "resource_type"})
_PERMISSION_FIELDS = _PERMISSION_CORE_FIELDS | {"name", "description"}


@dataclass(frozen=True, slots=True)
class GrantSpec:
    """A permission to grant a role, with optional conditions."""

    permission_id: int
    conditions: dict[str, Any] | None = None


class RoleAdminService:
    """Administrative operations on roles, grants and assignments."""

    def __init__(
        self,
        repository: RBACRepository,
        cache: PermissionCache,
        resolver: RoleResolver,
        *,
        fallback_role_slug: str = DEFAULT_ROLE_SLUG,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._resolver = resolver
        self._fallback_role_slug = fallback_role_slug
        self._clock = clock

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def assign_role(
        self,
        user_id: int,
        role_id: int,
        session: AsyncSession,
        *,
        expires_at: datetime | None = None,
        assigned_by: int | None = None,
    ) -> bool:
        """Assign a role (or refresh an existing assignment's expiry). Returns ``True`` if newly assigned."""
        if await self._repo.get_user(user_id, session) is None:
            raise UserNotFoundError(user_id)
        role = await self._get_role_or_raise(role_id, session)

        created = await self._repo.upsert_user_role(
            user_id, role.id, session, expires_at=expires_at, assigned_by=assigned_by
        )
        await self._sync_primary_role(user_id, session)
        await self._cache.invalidate_user(user_id)
        logger.info("Assigned role '%s' to user %d (expires_at=%s)", role.slug, user_id, expires_at)
        return created

    async def revoke_role(self, user_id: int, role_id: int, session: AsyncSession) -> bool:
        """Remove a role from a user. Returns ``False`` if the user didn't have it."""
        role = await self._get_role_or_raise(role_id, session)
        removed = await self._repo.delete_user_role(user_id, role.id, session)
        if not removed:
            return False

        await self._sync_primary_role(user_id, session)
        await self._cache.invalidate_user(user_id)
        logger.info("Revoked role '%s' from user %d", role.slug, user_id)
        return True

    async def _sync_primary_role(self, user_id: int, session: AsyncSession) -> None:
        """Mirror the highest-priority effective role onto ``users.role``.

        Reads the store directly so uncommitted assignments never reach the cache.
        """
        roles = await self._repo.get_effective_user_roles(user_id, self._clock(), session)
        primary = roles[0].slug if roles else self._fallback_role_slug
        await self._repo.set_user_role_mirror(user_id, primary, session)

    # ------------------------------------------------------------------
    # Role definitions
    # ------------------------------------------------------------------

    async def list_roles(self, session: AsyncSession) -> list[Role]:
        return await self._repo.list_roles(session)

    async def create_role(
        self,
        session: AsyncSession,
        *,
        slug: str,
        name: str,
        description: str | None = None,
        color: str | None = None,
        icon: str | None = None,
        parent_id: int | None = None,
        is_default: bool = False,
        is_displayed: bool = True,
        priority: int = 0,
    ) -> Role:
        """Create a custom (non-system) role."""
        if await self._repo.get_role_by_slug(slug, session) is not None:
            raise RoleValidationError(f"Role slug already exists: {slug}")
        if parent_id is not None:
            await self._get_role_or_raise(parent_id, session)

        role = Role(
            slug=slug,
            name=name,
            description=description,
            color=color,
            icon=icon,
            parent_id=parent_id,
            is_system=False,
            is_default=is_default,
            is_displayed=is_displayed,
            priority=priority,
        )
        await self._repo.add_role(role, session)
        logger.info("Created role '%s' (id=%d)", slug, role.id)
        return role

    async def update_role(self, role_id: int, session: AsyncSession, **changes: Any) -> Role:
        """Update role fields.

        System roles keep their slug. A new ``parent_id`` must exist and must
        not make the role its own ancestor; both are checked before anything
        is written.
        """
        unknown = set(changes) - _ROLE_FIELDS
        if unknown:
            raise RoleValidationError(f"Unknown role fields: {', '.join(sorted(unknown))}")

        role = await self._get_role_or_raise(role_id, session)

        if role.is_system and "slug" in changes and changes["slug"] != role.slug:
            logger.warning("Ignoring slug change on system role '%s'", role.slug)
            del changes["slug"]

        if "parent_id" in changes and changes["parent_id"] is not None:
            parent_id = changes["parent_id"]
            if await self._resolver.detect_circular_inheritance(role_id, parent_id, session):
                raise RoleValidationError(f"Setting parent {parent_id} on role {role_id} would create a cycle")
            if await self._repo.get_role(parent_id, session) is None:
                raise RoleValidationError(f"Parent role {parent_id} does not exist")

        affects_access = any(field in changes for field in ("slug", "parent_id", "priority", "is_displayed"))
        for field, value in changes.items():
            setattr(role, field, value)
        await session.flush()

        if affects_access:
            await self._invalidate_role_holders(role_id, session)
        return role

    async def delete_role(self, role_id: int, session: AsyncSession) -> None:
        """Delete a custom role. System roles cannot be deleted."""
        role = await self._get_role_or_raise(role_id, session)
        if role.is_system:
            raise RoleValidationError(f"Cannot delete system role '{role.slug}'")

        affected = await self._affected_users(role_id, session)
        await self._repo.delete_role(role, session)
        await self._cache.invalidate_users(affected)
        logger.info("Deleted role '%s' (id=%d)", role.slug, role_id)

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def get_role_permissions(
        self, role_id: int, session: AsyncSession
    ) -> list[tuple[Permission, dict[str, Any] | None]]:
        await self._get_role_or_raise(role_id, session)
        return await self._repo.get_role_permission_rows(role_id, session)

    async def set_role_permissions(self, role_id: int, grants: list[GrantSpec], session: AsyncSession) -> None:
        """Replace a role's grants. Conditions are validated and stored in canonical form."""
        await self._get_role_or_raise(role_id, session)

        normalized: dict[int, dict[str, Any] | None] = {}
        for grant in grants:
            if await self._repo.get_permission(grant.permission_id, session) is None:
                raise PermissionNotFoundError(grant.permission_id)
            try:
                normalized[grant.permission_id] = normalize_conditions(grant.conditions)
            except ValueError as exc:
                raise RoleValidationError(str(exc)) from exc

        await self._repo.replace_role_permissions(role_id, list(normalized.items()), session)
        await self._invalidate_role_holders(role_id, session)
        logger.info("Set %d permissions on role %d", len(normalized), role_id)

    # ------------------------------------------------------------------
    # Permission definitions
    # ------------------------------------------------------------------

    async def list_permissions(self, session: AsyncSession) -> list[Permission]:
        return await self._repo.list_permissions(session)

    async def update_permission(self, permission_id: int, session: AsyncSession, **changes: Any) -> Permission:
        """Update a permission. System permissions only accept name/description changes."""
        unknown = set(changes) - _PERMISSION_FIELDS
        if unknown:
            raise PermissionValidationError(f"Unknown permission fields: {', '.join(sorted(unknown))}")

        permission = await self._get_permission_or_raise(permission_id, session)
        if permission.is_system:
            locked = {f for f in _PERMISSION_CORE_FIELDS & changes.keys() if changes[f] != getattr(permission, f)}
            if locked:
                raise PermissionValidationError(
                    f"Cannot change {', '.join(sorted(locked))} of system permission '{permission.slug}'"
                )

        slug_changed = "slug" in changes and changes["slug"] != permission.slug
        for field, value in changes.items():
            setattr(permission, field, value)
        await session.flush()

        if slug_changed:
            # Cached permission sets are keyed by slug.
            holders = await self._repo.get_user_ids_with_roles(
                await self._roles_granting(permission_id, session), session
            )
            await self._cache.invalidate_users(holders)
        return permission

    async def delete_permission(self, permission_id: int, session: AsyncSession) -> None:
        """Delete a custom permission. System permissions cannot be deleted."""
        permission = await self._get_permission_or_raise(permission_id, session)
        if permission.is_system:
            raise PermissionValidationError(f"Cannot delete system permission '{permission.slug}'")

        affected = await self._repo.get_user_ids_with_roles(
            await self._roles_granting(permission_id, session), session
        )
        await session.delete(permission)
        await session.flush()
        await self._cache.invalidate_users(affected)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _roles_granting(self, permission_id: int, session: AsyncSession) -> set[int]:
        """Return every role that holds *permission_id*, directly or by inheritance."""
        role_ids: set[int] = set()
        for role_id in await self._repo.get_role_ids_granting(permission_id, session):
            role_ids |= await self._resolver.get_descendant_role_ids(role_id, session)
        return role_ids

    async def _affected_users(self, role_id: int, session: AsyncSession) -> set[int]:
        role_ids = await self._resolver.get_descendant_role_ids(role_id, session)
        return await self._repo.get_user_ids_with_roles(role_ids, session)

    async def _invalidate_role_holders(self, role_id: int, session: AsyncSession) -> None:
        await self._cache.invalidate_users(await self._affected_users(role_id, session))

    async def _get_role_or_raise(self, role_id: int, session: AsyncSession) -> Role:
        role = await self._repo.get_role(role_id, session)
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    async def _get_permission_or_raise(self, permission_id: int, session: AsyncSession) -> Permission:
        permission = await self._repo.get_permission(permission_id, session)
        if permission is None:
            raise PermissionNotFoundError(permission_id)
        return permission
