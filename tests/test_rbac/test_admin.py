"""Tests for RoleAdminService: assignments, role CRUD and cache invalidation."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from forum_rbac.cache.backends import MemoryCache
from forum_rbac.cache.service import PermissionCache, user_roles_key
from forum_rbac.db.base import Base
from forum_rbac.db.models.rbac import Permission, Role, RolePermission
from forum_rbac.db.models.user import User
from forum_rbac.db.repository import RBACRepository
from forum_rbac.exceptions import (
    PermissionNotFoundError,
    PermissionValidationError,
    RoleNotFoundError,
    RoleValidationError,
    UserNotFoundError,
)
from forum_rbac.rbac.admin import GrantSpec, RoleAdminService
from forum_rbac.rbac.service import PermissionService


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as sess:
        yield sess
        await sess.commit()


@pytest.fixture
def cache() -> PermissionCache:
    return PermissionCache(MemoryCache())


@pytest.fixture
def service(cache: PermissionCache) -> PermissionService:
    return PermissionService(RBACRepository(), cache)


@pytest.fixture
def admin(cache: PermissionCache, service: PermissionService) -> RoleAdminService:
    return RoleAdminService(RBACRepository(), cache, service.resolver)


@pytest.fixture
async def seeded_data(session: AsyncSession) -> dict[str, int]:
    """Seed a user, the system roles, a custom role chain and two permissions."""
    user = User(username="admin_test_user")
    session.add(user)
    await session.flush()

    p_create = Permission(slug="topic.create", name="Create topic", module="topic", action="create", is_system=True)
    p_custom = Permission(slug="wiki.edit", name="Edit wiki", module="wiki", action="edit")
    session.add_all([p_create, p_custom])
    await session.flush()

    admin_role = Role(slug="admin", name="Administrator", priority=100, is_system=True)
    user_role = Role(slug="user", name="Member", priority=10, is_system=True, is_default=True)
    session.add_all([admin_role, user_role])
    await session.flush()
    vip = Role(slug="vip", name="VIP", priority=20, parent_id=user_role.id)
    session.add(vip)
    await session.flush()
    patron = Role(slug="patron", name="Patron", priority=30, parent_id=vip.id)
    session.add(patron)
    await session.flush()

    session.add(RolePermission(role_id=user_role.id, permission_id=p_create.id))
    await session.flush()

    return {
        "user_id": user.id,
        "admin_role_id": admin_role.id,
        "user_role_id": user_role.id,
        "vip_role_id": vip.id,
        "patron_role_id": patron.id,
        "create_perm_id": p_create.id,
        "custom_perm_id": p_custom.id,
    }


class TestAssignments:
    async def test_assign_invalidates_and_mirrors(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        user_id = seeded_data["user_id"]
        assert await service.has_permission(user_id, "topic.create", session) is False

        created = await admin.assign_role(user_id, seeded_data["vip_role_id"], session)
        assert created is True
        # vip inherits topic.create from user; the cached denial must be gone.
        assert await service.has_permission(user_id, "topic.create", session) is True

        user = await session.get(User, user_id)
        assert user is not None
        assert user.role == "vip"

    async def test_rolled_back_assignment_grants_nothing(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        cache: PermissionCache,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        await session.commit()
        user_id = seeded_data["user_id"]

        await admin.assign_role(user_id, seeded_data["admin_role_id"], session)
        assert await cache.backend.get(user_roles_key(user_id)) is None
        await session.rollback()

        assert await RBACRepository().get_effective_user_roles(user_id, datetime.now(UTC), session) == []
        assert await service.is_admin(user_id, session) is False
        assert await service.has_permission(user_id, "wiki.edit", session) is False

    async def test_reassign_refreshes_expiry(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        user_id, role_id = seeded_data["user_id"], seeded_data["vip_role_id"]
        expires = datetime.now(UTC) + timedelta(days=30)
        assert await admin.assign_role(user_id, role_id, session) is True
        assert await admin.assign_role(user_id, role_id, session, expires_at=expires) is False

        row = await RBACRepository().get_user_role(user_id, role_id, session)
        assert row is not None
        assert row.expires_at is not None

    async def test_assign_unknown_user(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(UserNotFoundError):
            await admin.assign_role(9999, seeded_data["vip_role_id"], session)

    async def test_assign_unknown_role(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleNotFoundError, match="Role not found: 9999"):
            await admin.assign_role(seeded_data["user_id"], 9999, session)

    async def test_revoke(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        user_id = seeded_data["user_id"]
        await admin.assign_role(user_id, seeded_data["user_role_id"], session)
        assert await service.has_permission(user_id, "topic.create", session) is True

        assert await admin.revoke_role(user_id, seeded_data["user_role_id"], session) is True
        assert await service.has_permission(user_id, "topic.create", session) is False
        assert await admin.revoke_role(user_id, seeded_data["user_role_id"], session) is False

        user = await session.get(User, user_id)
        assert user is not None
        assert user.role == "user"


class TestRoleDefinitions:
    async def test_create_role(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        role = await admin.create_role(session, slug="helper", name="Helper", parent_id=seeded_data["user_role_id"])
        assert role.id is not None
        assert role.is_system is False

    async def test_create_duplicate_slug(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleValidationError, match="already exists"):
            await admin.create_role(session, slug="vip", name="Another VIP")

    async def test_cycle_rejected_before_write(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleValidationError, match="cycle"):
            await admin.update_role(seeded_data["user_role_id"], session, parent_id=seeded_data["patron_role_id"])

        role = await session.get(Role, seeded_data["user_role_id"])
        assert role is not None
        assert role.parent_id is None

    async def test_missing_parent_rejected(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleValidationError, match="does not exist"):
            await admin.update_role(seeded_data["vip_role_id"], session, parent_id=9999)

    async def test_system_role_keeps_slug(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        role = await admin.update_role(seeded_data["user_role_id"], session, slug="member", name="Members")
        assert role.slug == "user"
        assert role.name == "Members"

    async def test_unknown_field_rejected(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleValidationError, match="Unknown role fields"):
            await admin.update_role(seeded_data["vip_role_id"], session, is_system=True)

    async def test_parent_change_invalidates_descendant_holders(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        user_id = seeded_data["user_id"]
        await admin.assign_role(user_id, seeded_data["patron_role_id"], session)
        assert await service.has_permission(user_id, "topic.create", session) is True

        # Detach vip from user: patron (a child of vip) loses the inherited grant.
        await admin.update_role(seeded_data["vip_role_id"], session, parent_id=None)
        assert await service.has_permission(user_id, "topic.create", session) is False

    async def test_delete_system_role_refused(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleValidationError, match="system role"):
            await admin.delete_role(seeded_data["admin_role_id"], session)

    async def test_delete_custom_role(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        user_id = seeded_data["user_id"]
        role = await admin.create_role(session, slug="temp", name="Temp")
        await admin.set_role_permissions(role.id, [GrantSpec(seeded_data["custom_perm_id"])], session)
        await admin.assign_role(user_id, role.id, session)
        assert await service.has_permission(user_id, "wiki.edit", session) is True

        await admin.delete_role(role.id, session)
        assert await service.has_permission(user_id, "wiki.edit", session) is False
        assert await RBACRepository().get_user_role(user_id, role.id, session) is None


class TestGrants:
    async def test_set_role_permissions_normalizes(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        role_id = seeded_data["vip_role_id"]
        await admin.set_role_permissions(
            role_id,
            [
                GrantSpec(seeded_data["create_perm_id"], {"allowedFileTypes": [".PNG"], "own": False}),
                GrantSpec(seeded_data["custom_perm_id"], {}),
            ],
            session,
        )

        rows = {perm.slug: conditions for perm, conditions in await admin.get_role_permissions(role_id, session)}
        assert rows == {"topic.create": {"allowedFileTypes": ["png"]}, "wiki.edit": None}

    async def test_set_role_permissions_invalid_conditions(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(RoleValidationError):
            await admin.set_role_permissions(
                seeded_data["vip_role_id"],
                [GrantSpec(seeded_data["create_perm_id"], {"timeRange": {"start": "25:00", "end": "26:00"}})],
                session,
            )

    async def test_set_role_permissions_unknown_permission(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(PermissionNotFoundError):
            await admin.set_role_permissions(seeded_data["vip_role_id"], [GrantSpec(9999)], session)

    async def test_grant_change_invalidates_inheriting_holders(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        user_id = seeded_data["user_id"]
        await admin.assign_role(user_id, seeded_data["patron_role_id"], session)
        assert await service.has_permission(user_id, "wiki.edit", session) is False

        await admin.set_role_permissions(
            seeded_data["user_role_id"], [GrantSpec(seeded_data["custom_perm_id"])], session
        )
        assert await service.has_permission(user_id, "wiki.edit", session) is True
        assert await service.has_permission(user_id, "topic.create", session) is False


class TestPermissionDefinitions:
    async def test_system_permission_core_fields_locked(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(PermissionValidationError):
            await admin.update_permission(seeded_data["create_perm_id"], session, slug="topic.new")

        perm = await admin.update_permission(seeded_data["create_perm_id"], session, name="Start a topic")
        assert perm.name == "Start a topic"

    async def test_delete_system_permission_refused(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(PermissionValidationError):
            await admin.delete_permission(seeded_data["create_perm_id"], session)

    async def test_delete_custom_permission(
        self, admin: RoleAdminService, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        await admin.delete_permission(seeded_data["custom_perm_id"], session)
        assert [p.slug for p in await admin.list_permissions(session)] == ["topic.create"]

    async def test_delete_permission_invalidates_inheriting_holders(
        self,
        admin: RoleAdminService,
        service: PermissionService,
        session: AsyncSession,
        seeded_data: dict[str, int],
    ) -> None:
        user_id = seeded_data["user_id"]
        await admin.set_role_permissions(
            seeded_data["user_role_id"], [GrantSpec(seeded_data["custom_perm_id"])], session
        )
        await admin.assign_role(user_id, seeded_data["patron_role_id"], session)
        assert await service.has_permission(user_id, "wiki.edit", session) is True

        await admin.delete_permission(seeded_data["custom_perm_id"], session)
        assert await service.has_permission(user_id, "wiki.edit", session) is False
