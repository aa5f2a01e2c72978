"""RBAC bootstrap: seeding defaults, default roles and the first administrator."""

import logging
from dataclasses import dataclass, field, fields
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.cache.service import PermissionCache
from forum_rbac.config.constants import ADMIN_ROLE_SLUG, DEFAULT_ROLE_SLUG
from forum_rbac.db.models.rbac import Permission, Role
from forum_rbac.db.repository import RBACRepository
from forum_rbac.exceptions import RBACConfigError
from forum_rbac.rbac.conditions import normalize_conditions
from forum_rbac.rbac.defaults import (
    SYSTEM_PERMISSIONS,
    SYSTEM_ROLES,
    PermissionDefinition,
    RoleDefinition,
    desired_role_permissions,
    validate_rbac_config,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome counts of one reconciliation pass."""

    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    extras: list[str] = field(default_factory=list)


@dataclass
class SeedReport:
    roles: SyncReport = field(default_factory=SyncReport)
    permissions: SyncReport = field(default_factory=SyncReport)
    role_permissions: SyncReport = field(default_factory=SyncReport)


class RBACBootstrapper:
    """Brings a store to a usable RBAC state and keeps it there.

    Every operation is idempotent: running it again against the same store
    changes nothing.
    """

    def __init__(
        self,
        repository: RBACRepository,
        cache: PermissionCache | None = None,
        *,
        default_role_slug: str = DEFAULT_ROLE_SLUG,
        admin_role_slug: str = ADMIN_ROLE_SLUG,
    ) -> None:
        self._repo = repository
        self._cache = cache if cache is not None else PermissionCache()
        self._default_role_slug = default_role_slug
        self._admin_role_slug = admin_role_slug

    async def assign_default_role(self, user_id: int, session: AsyncSession) -> bool:
        """Give a newly registered user the default role.

        The role flagged ``is_default`` is used, falling back to the role with
        the configured default slug. Returns ``True`` if a row was inserted.
        """
        role = await self._repo.get_default_role(session)
        if role is None:
            role = await self._repo.get_role_by_slug(self._default_role_slug, session)
        if role is None:
            logger.warning("No default role configured; user %d left without roles", user_id)
            return False

        inserted = await self._repo.insert_user_role_if_absent(user_id, role.id, session)
        if inserted:
            await self._cache.invalidate_user(user_id)
            logger.info("Assigned default role '%s' to user %d", role.slug, user_id)
        return inserted

    async def ensure_admin_exists(self, session: AsyncSession) -> int | None:
        """Make the founding user an administrator if nobody holds the admin role.

        Returns the id of the promoted user, or ``None`` when nothing changed.
        """
        admin_role = await self._repo.get_role_by_slug(self._admin_role_slug, session)
        if admin_role is None:
            logger.warning("Admin role '%s' does not exist; run seed_rbac first", self._admin_role_slug)
            return None
        if await self._repo.role_has_holders(admin_role.id, session):
            return None

        founder = await self._repo.get_founder_user(session)
        if founder is None:
            return None

        await self._repo.insert_user_role_if_absent(founder.id, admin_role.id, session)
        await self._repo.set_user_role_mirror(founder.id, admin_role.slug, session)
        await self._cache.invalidate_user(founder.id)
        logger.info("Promoted founding user %d (%s) to '%s'", founder.id, founder.username, admin_role.slug)
        return founder.id

    async def sync_role_permissions(
        self,
        desired: dict[str, dict[str, dict[str, Any] | None]],
        session: AsyncSession,
    ) -> SyncReport:
        """Reconcile role grants against ``{role_slug: {permission_slug: conditions}}``.

        Missing grants are inserted and changed conditions updated. Grants
        present in the store but absent from *desired* are reported in
        ``extras`` and left in place.
        """
        report = SyncReport()
        all_slugs = {slug for grants in desired.values() for slug in grants}
        permission_ids = await self._repo.get_permission_map(all_slugs, session)
        touched_roles: set[int] = set()

        for role_slug, grants in desired.items():
            role = await self._repo.get_role_by_slug(role_slug, session)
            if role is None:
                logger.warning("Skipping grants for unknown role '%s'", role_slug)
                report.skipped += len(grants)
                continue

            wanted_ids: set[int] = set()
            for permission_slug, conditions in grants.items():
                permission_id = permission_ids.get(permission_slug)
                if permission_id is None:
                    logger.warning("Skipping unknown permission '%s' for role '%s'", permission_slug, role_slug)
                    report.skipped += 1
                    continue

                wanted_ids.add(permission_id)
                outcome = await self._repo.upsert_role_permission(
                    role.id, permission_id, normalize_conditions(conditions), session
                )
                setattr(report, outcome, getattr(report, outcome) + 1)
                if outcome != "unchanged":
                    touched_roles.add(role.id)

            for permission, _ in await self._repo.get_role_permission_rows(role.id, session):
                if permission.id not in wanted_ids:
                    report.extras.append(f"{role_slug}:{permission.slug}")

        if report.extras:
            logger.info("Keeping %d grants not in the defaults: %s", len(report.extras), ", ".join(report.extras))
        if touched_roles:
            await self._cache.invalidate_users(await self._repo.get_user_ids_with_roles(touched_roles, session))

        logger.info(
            "Role permissions synced (added=%d, updated=%d, unchanged=%d, skipped=%d)",
            report.added,
            report.updated,
            report.unchanged,
            report.skipped,
        )
        return report

    async def seed_rbac(self, session: AsyncSession, *, reset: bool = False) -> SeedReport:
        """Create the system roles, permissions and default grants.

        Existing roles and permissions are left untouched unless *reset* is
        set, in which case their fields are overwritten from the defaults.
        """
        errors = validate_rbac_config()
        if errors:
            for error in errors:
                logger.error("RBAC config: %s", error)
            raise RBACConfigError(errors)

        report = SeedReport()

        role_ids: dict[str, int] = {}
        for role_def in SYSTEM_ROLES:
            role = await self._upsert_role(role_def, reset, report.roles, session)
            role_ids[role_def.slug] = role.id

        for role_def in SYSTEM_ROLES:
            if role_def.parent_slug is None:
                continue
            role = await self._repo.get_role(role_ids[role_def.slug], session)
            if role is not None:
                role.parent_id = role_ids[role_def.parent_slug]
        await session.flush()

        for perm_def in SYSTEM_PERMISSIONS:
            await self._upsert_permission(perm_def, reset, report.permissions, session)

        report.role_permissions = await self.sync_role_permissions(desired_role_permissions(), session)
        logger.info(
            "RBAC seeded: roles +%d/~%d, permissions +%d/~%d",
            report.roles.added,
            report.roles.updated,
            report.permissions.added,
            report.permissions.updated,
        )
        return report

    async def _upsert_role(
        self, role_def: RoleDefinition, reset: bool, report: SyncReport, session: AsyncSession
    ) -> Role:
        values = {f.name: getattr(role_def, f.name) for f in fields(role_def) if f.name != "parent_slug"}
        role = await self._repo.get_role_by_slug(role_def.slug, session)
        if role is None:
            role = await self._repo.add_role(Role(is_system=True, **values), session)
            report.added += 1
            logger.info("Created role '%s'", role_def.slug)
            return role

        if reset:
            for name, value in values.items():
                setattr(role, name, value)
            role.is_system = True
            await session.flush()
            report.updated += 1
        else:
            report.unchanged += 1
        return role

    async def _upsert_permission(
        self, perm_def: PermissionDefinition, reset: bool, report: SyncReport, session: AsyncSession
    ) -> Permission:
        values = {
            "slug": perm_def.slug,
            "name": perm_def.name,
            "description": perm_def.description,
            "module": perm_def.module,
            "action": perm_def.action,
        }
        permission = await self._repo.get_permission_by_slug(perm_def.slug, session)
        if permission is None:
            permission = Permission(is_system=True, **values)
            session.add(permission)
            await session.flush()
            report.added += 1
            return permission

        if reset:
            for name, value in values.items():
                setattr(permission, name, value)
            permission.is_system = True
            await session.flush()
            report.updated += 1
        else:
            report.unchanged += 1
        return permission
