"""Role resolution: effective role assignments and inherited ancestors."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.cache.service import PermissionCache, user_roles_key
from forum_rbac.db.base import utc_now
from forum_rbac.db.repository import RBACRepository
from forum_rbac.rbac.types import DisplayRole, UserRoleInfo

logger = logging.getLogger(__name__)


class RoleResolver:
    """Answers "which roles apply to this user right now?".

    Roles form a single-parent hierarchy stored as ``roles.parent_id``; the
    parent is looked up by id, never held as a nested object.
    """

    def __init__(
        self,
        repository: RBACRepository,
        cache: PermissionCache,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._clock = clock

    async def get_user_roles(self, user_id: int, session: AsyncSession) -> list[UserRoleInfo]:
        """Return the user's directly assigned, unexpired roles (highest priority first).

        An unknown user has no roles.
        """

        async def _load() -> list[dict[str, object]]:
            roles = await self._repo.get_effective_user_roles(user_id, self._clock(), session)
            return [
                UserRoleInfo(
                    id=r.id,
                    slug=r.slug,
                    name=r.name,
                    color=r.color,
                    icon=r.icon,
                    priority=r.priority,
                    is_displayed=r.is_displayed,
                    parent_id=r.parent_id,
                ).to_dict()
                for r in roles
            ]

        rows = await self._cache.remember(user_roles_key(user_id), _load)
        return [UserRoleInfo.from_dict(row) for row in rows]

    async def has_role(self, user_id: int, slug: str, session: AsyncSession) -> bool:
        return any(role.slug == slug for role in await self.get_user_roles(user_id, session))

    async def get_all_role_ids_with_inheritance(self, user_id: int, session: AsyncSession) -> set[int]:
        """Return the user's effective role ids plus every ancestor of those roles."""
        user_roles = await self.get_user_roles(user_id, session)
        role_ids = {role.id for role in user_roles}

        for role in user_roles:
            if role.parent_id is not None:
                role_ids.update(await self._get_ancestor_role_ids(role.id, session))

        return role_ids

    async def _get_ancestor_role_ids(
        self,
        role_id: int,
        session: AsyncSession,
        visited: set[int] | None = None,
    ) -> list[int]:
        """Walk ``parent_id`` upward from *role_id*.

        A revisited role ends the walk, so a cyclic chain already in the
        store still terminates.
        """
        visited = visited if visited is not None else set()
        ancestors: list[int] = []
        current = role_id

        while current not in visited:
            visited.add(current)
            parent_id = await self._repo.get_parent_id(current, session)
            if parent_id is None:
                break
            if parent_id in visited:
                logger.warning("Role inheritance cycle detected at role %d -> %d", current, parent_id)
                break
            ancestors.append(parent_id)
            current = parent_id

        return ancestors

    async def detect_circular_inheritance(self, role_id: int, parent_id: int | None, session: AsyncSession) -> bool:
        """Return ``True`` if making *parent_id* the parent of *role_id* would close a cycle."""
        if parent_id is None:
            return False
        if parent_id == role_id:
            return True

        visited = {role_id}
        current: int | None = parent_id
        while current is not None:
            if current in visited:
                return True
            visited.add(current)
            current = await self._repo.get_parent_id(current, session)
        return False

    async def get_descendant_role_ids(self, role_id: int, session: AsyncSession) -> set[int]:
        """Return *role_id* and every role that inherits from it, directly or transitively."""
        found = {role_id}
        frontier = {role_id}
        while frontier:
            children = await self._repo.get_child_role_ids(frontier, session)
            frontier = children - found
            found |= frontier
        return found

    async def get_display_role(self, user_id: int, session: AsyncSession) -> DisplayRole | None:
        """Return the highest-priority displayed role, shown next to the user's name."""
        displayed = [r for r in await self.get_user_roles(user_id, session) if r.is_displayed]
        if not displayed:
            return None
        top = max(displayed, key=lambda r: r.priority)
        return DisplayRole(slug=top.slug, name=top.name, color=top.color, icon=top.icon)
