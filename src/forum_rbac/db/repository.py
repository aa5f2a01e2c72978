"""Database operations for roles, permissions and their assignments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.db.base import utc_now
from forum_rbac.db.models.rbac import Permission, Role, RolePermission, UserRole
from forum_rbac.db.models.user import User

logger = logging.getLogger(__name__)

UpsertOutcome = Literal["added", "updated", "unchanged"]


@dataclass(frozen=True, slots=True)
class GrantRow:
    """One role's grant of one permission, joined with the role's priority."""

    slug: str
    module: str
    action: str
    role_id: int
    role_priority: int
    conditions: dict[str, Any] | None


class RBACRepository:
    """All reads and writes the permission engine performs against the store.

    Stateless; every method takes the caller's ``AsyncSession`` and flushes
    but never commits.
    """

    # ------------------------------------------------------------------
    # User roles
    # ------------------------------------------------------------------

    async def get_effective_user_roles(self, user_id: int, now: datetime, session: AsyncSession) -> list[Role]:
        """Return the roles assigned to *user_id* that have not expired as of *now*."""
        stmt = (
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(
                UserRole.user_id == user_id,
                or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
            )
            .order_by(Role.priority.desc(), Role.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_user_role(self, user_id: int, role_id: int, session: AsyncSession) -> UserRole | None:
        result = await session.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        return result.scalar_one_or_none()

    async def upsert_user_role(
        self,
        user_id: int,
        role_id: int,
        session: AsyncSession,
        *,
        expires_at: datetime | None = None,
        assigned_by: int | None = None,
    ) -> bool:
        """Assign a role, or refresh expiry/assigner of an existing assignment.

        Returns ``True`` if a new row was created.
        """
        existing = await self.get_user_role(user_id, role_id, session)
        if existing is not None:
            existing.expires_at = expires_at
            existing.assigned_by = assigned_by
            existing.assigned_at = utc_now()
            await session.flush()
            return False

        session.add(UserRole(user_id=user_id, role_id=role_id, expires_at=expires_at, assigned_by=assigned_by))
        await session.flush()
        return True

    async def insert_user_role_if_absent(self, user_id: int, role_id: int, session: AsyncSession) -> bool:
        """Insert an assignment unless it exists. Returns ``True`` if newly inserted.

        The insert runs in a savepoint. When it fails because a concurrent
        caller inserted the same pair first, the row is found on re-read and
        ``False`` is returned; any other integrity error (unknown user or role)
        propagates.
        """
        if await self.get_user_role(user_id, role_id, session) is not None:
            return False
        try:
            async with session.begin_nested():
                session.add(UserRole(user_id=user_id, role_id=role_id))
                await session.flush()
        except IntegrityError:
            if await self.get_user_role(user_id, role_id, session) is not None:
                return False
            raise
        return True

    async def delete_user_role(self, user_id: int, role_id: int, session: AsyncSession) -> bool:
        """Remove an assignment. Returns ``False`` if there was none."""
        row = await self.get_user_role(user_id, role_id, session)
        if row is None:
            return False
        await session.delete(row)
        await session.flush()
        return True

    async def get_user_ids_with_roles(self, role_ids: set[int], session: AsyncSession) -> set[int]:
        """Return ids of users holding any of *role_ids*, expired or not."""
        if not role_ids:
            return set()
        result = await session.execute(select(UserRole.user_id).where(UserRole.role_id.in_(role_ids)).distinct())
        return set(result.scalars().all())

    async def role_has_holders(self, role_id: int, session: AsyncSession) -> bool:
        result = await session.execute(select(func.count(UserRole.id)).where(UserRole.role_id == role_id))
        return (result.scalar() or 0) > 0

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def get_role(self, role_id: int, session: AsyncSession) -> Role | None:
        result = await session.execute(select(Role).where(Role.id == role_id))
        return result.scalar_one_or_none()

    async def get_role_by_slug(self, slug: str, session: AsyncSession) -> Role | None:
        result = await session.execute(select(Role).where(Role.slug == slug))
        return result.scalar_one_or_none()

    async def get_default_role(self, session: AsyncSession) -> Role | None:
        """Return the highest-priority role flagged ``is_default``."""
        result = await session.execute(
            select(Role).where(Role.is_default.is_(True)).order_by(Role.priority.desc(), Role.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_parent_id(self, role_id: int, session: AsyncSession) -> int | None:
        """Return the parent role id of *role_id* (``None`` for a root or unknown role)."""
        result = await session.execute(select(Role.parent_id).where(Role.id == role_id).limit(1))
        return result.scalar_one_or_none()

    async def get_child_role_ids(self, role_ids: set[int], session: AsyncSession) -> set[int]:
        if not role_ids:
            return set()
        result = await session.execute(select(Role.id).where(Role.parent_id.in_(role_ids)))
        return set(result.scalars().all())

    async def list_roles(self, session: AsyncSession) -> list[Role]:
        result = await session.execute(select(Role).order_by(Role.priority, Role.id))
        return list(result.scalars().all())

    async def add_role(self, role: Role, session: AsyncSession) -> Role:
        session.add(role)
        await session.flush()
        return role

    async def delete_role(self, role: Role, session: AsyncSession) -> None:
        await session.delete(role)
        await session.flush()

    # ------------------------------------------------------------------
    # Permissions and grants
    # ------------------------------------------------------------------

    async def get_permission(self, permission_id: int, session: AsyncSession) -> Permission | None:
        result = await session.execute(select(Permission).where(Permission.id == permission_id))
        return result.scalar_one_or_none()

    async def get_permission_by_slug(self, slug: str, session: AsyncSession) -> Permission | None:
        result = await session.execute(select(Permission).where(Permission.slug == slug))
        return result.scalar_one_or_none()

    async def get_permission_map(self, slugs: set[str], session: AsyncSession) -> dict[str, int]:
        """Return a slug->id map for the known slugs among *slugs*."""
        if not slugs:
            return {}
        result = await session.execute(select(Permission.slug, Permission.id).where(Permission.slug.in_(slugs)))
        return {row.slug: row.id for row in result.all()}

    async def list_permissions(self, session: AsyncSession) -> list[Permission]:
        result = await session.execute(select(Permission).order_by(Permission.module, Permission.action))
        return list(result.scalars().all())

    async def get_grants_for_roles(self, role_ids: set[int], session: AsyncSession) -> list[GrantRow]:
        """Return every grant held by *role_ids*, joined to Permission and the role priority."""
        if not role_ids:
            return []
        stmt = (
            select(
                Permission.slug,
                Permission.module,
                Permission.action,
                RolePermission.role_id,
                Role.priority,
                RolePermission.conditions,
            )
            .join(Permission, Permission.id == RolePermission.permission_id)
            .join(Role, Role.id == RolePermission.role_id)
            .where(RolePermission.role_id.in_(role_ids))
            .order_by(RolePermission.id)
        )
        result = await session.execute(stmt)
        return [
            GrantRow(
                slug=row.slug,
                module=row.module,
                action=row.action,
                role_id=row.role_id,
                role_priority=row.priority,
                conditions=row.conditions,
            )
            for row in result.all()
        ]

    async def get_role_permission_rows(
        self, role_id: int, session: AsyncSession
    ) -> list[tuple[Permission, dict[str, Any] | None]]:
        """Return ``(permission, conditions)`` pairs granted directly to *role_id*."""
        stmt = (
            select(Permission, RolePermission.conditions)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.module, Permission.action)
        )
        result = await session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def upsert_role_permission(
        self,
        role_id: int,
        permission_id: int,
        conditions: dict[str, Any] | None,
        session: AsyncSession,
    ) -> UpsertOutcome:
        """Insert a grant, or update its conditions in place."""
        result = await session.execute(
            select(RolePermission).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            session.add(RolePermission(role_id=role_id, permission_id=permission_id, conditions=conditions))
            await session.flush()
            return "added"
        if existing.conditions == conditions:
            return "unchanged"
        existing.conditions = conditions
        await session.flush()
        return "updated"

    async def replace_role_permissions(
        self,
        role_id: int,
        grants: list[tuple[int, dict[str, Any] | None]],
        session: AsyncSession,
    ) -> None:
        """Replace every grant of *role_id* with *grants* (``(permission_id, conditions)`` pairs)."""
        await session.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        for permission_id, conditions in grants:
            session.add(RolePermission(role_id=role_id, permission_id=permission_id, conditions=conditions))
        await session.flush()

    async def get_role_ids_granting(self, permission_id: int, session: AsyncSession) -> set[int]:
        """Return the ids of roles granted *permission_id* directly."""
        result = await session.execute(
            select(RolePermission.role_id).where(RolePermission.permission_id == permission_id)
        )
        return set(result.scalars().all())

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int, session: AsyncSession) -> User | None:
        result = await session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_founder_user(self, session: AsyncSession) -> User | None:
        """Return the user with the lowest id."""
        result = await session.execute(select(User).order_by(User.id).limit(1))
        return result.scalar_one_or_none()

    async def set_user_role_mirror(self, user_id: int, role_slug: str, session: AsyncSession) -> None:
        """Mirror *role_slug* onto ``users.role`` for clients that read the single-role column."""
        user = await self.get_user(user_id, session)
        if user is not None and user.role != role_slug:
            user.role = role_slug
            await session.flush()

    async def set_user_ban(
        self,
        user: User,
        session: AsyncSession,
        *,
        until: datetime | None = None,
        reason: str | None = None,
        banned_by: int | None = None,
    ) -> None:
        """Mark *user* banned, replacing any earlier ban's end, reason and issuer."""
        user.is_banned = True
        user.banned_until = until
        user.banned_reason = reason
        user.banned_by = banned_by
        await session.flush()

    async def clear_user_ban(self, user: User, session: AsyncSession) -> bool:
        """Lift *user*'s ban. Returns ``False`` if they were not banned."""
        if not user.is_banned:
            return False
        user.is_banned = False
        user.banned_until = None
        user.banned_reason = None
        user.banned_by = None
        await session.flush()
        return True
