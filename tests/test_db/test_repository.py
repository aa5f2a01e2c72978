"""Tests for RBACRepository queries and DatabaseManager."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from forum_rbac.config.database import DatabaseSettings
from forum_rbac.db.base import Base
from forum_rbac.db.models.rbac import Permission, Role, RolePermission, UserRole
from forum_rbac.db.models.user import User
from forum_rbac.db.repository import RBACRepository
from forum_rbac.db.session import DatabaseManager

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


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
def repo() -> RBACRepository:
    return RBACRepository()


@pytest.fixture
async def seeded_data(session: AsyncSession) -> dict[str, int]:
    user = User(username="repo_user")
    other = User(username="repo_other")
    session.add_all([user, other])
    await session.flush()

    perm = Permission(slug="post.create", name="Reply", module="post", action="create")
    session.add(perm)
    await session.flush()

    low = Role(slug="user", name="Member", priority=10, is_default=True)
    high = Role(slug="vip", name="VIP", priority=20, is_default=True)
    session.add_all([low, high])
    await session.flush()

    return {
        "user_id": user.id,
        "other_id": other.id,
        "perm_id": perm.id,
        "low_role_id": low.id,
        "high_role_id": high.id,
    }


class TestUserRoles:
    async def test_expiry_filtered_in_query(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        user_id = seeded_data["user_id"]
        session.add_all(
            [
                UserRole(user_id=user_id, role_id=seeded_data["low_role_id"], expires_at=NOW + timedelta(seconds=1)),
                UserRole(user_id=user_id, role_id=seeded_data["high_role_id"], expires_at=NOW),
            ]
        )
        await session.flush()

        roles = await repo.get_effective_user_roles(user_id, NOW, session)
        assert [r.slug for r in roles] == ["user"]

        later = await repo.get_effective_user_roles(user_id, NOW + timedelta(seconds=2), session)
        assert later == []

    async def test_insert_if_absent_is_idempotent(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        user_id, role_id = seeded_data["user_id"], seeded_data["low_role_id"]
        assert await repo.insert_user_role_if_absent(user_id, role_id, session) is True
        assert await repo.insert_user_role_if_absent(user_id, role_id, session) is False
        assert await repo.get_user_ids_with_roles({role_id}, session) == {user_id}

    async def test_concurrent_duplicate_returns_false(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        user_id, role_id = seeded_data["user_id"], seeded_data["low_role_id"]
        existing = UserRole(user_id=user_id, role_id=role_id)
        session.add(existing)
        await session.flush()

        # The first existence check misses, as if the other insert landed just after it.
        with patch.object(repo, "get_user_role", AsyncMock(side_effect=[None, existing])):
            assert await repo.insert_user_role_if_absent(user_id, role_id, session) is False
        assert await repo.get_user_ids_with_roles({role_id}, session) == {user_id}

    async def test_other_integrity_errors_propagate(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        with pytest.raises(IntegrityError):
            await repo.insert_user_role_if_absent(None, seeded_data["low_role_id"], session)  # type: ignore[arg-type]

    async def test_delete_user_role(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        user_id, role_id = seeded_data["user_id"], seeded_data["low_role_id"]
        assert await repo.delete_user_role(user_id, role_id, session) is False
        await repo.upsert_user_role(user_id, role_id, session)
        assert await repo.role_has_holders(role_id, session) is True
        assert await repo.delete_user_role(user_id, role_id, session) is True
        assert await repo.role_has_holders(role_id, session) is False

    async def test_default_role_prefers_priority(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        role = await repo.get_default_role(session)
        assert role is not None
        assert role.slug == "vip"

    async def test_founder_is_lowest_id(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        founder = await repo.get_founder_user(session)
        assert founder is not None
        assert founder.id == seeded_data["user_id"]


class TestGrants:
    async def test_upsert_outcomes(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        role_id, perm_id = seeded_data["low_role_id"], seeded_data["perm_id"]
        assert await repo.upsert_role_permission(role_id, perm_id, None, session) == "added"
        assert await repo.upsert_role_permission(role_id, perm_id, None, session) == "unchanged"
        assert await repo.upsert_role_permission(role_id, perm_id, {"own": True}, session) == "updated"

    async def test_grants_carry_role_priority(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        perm_id = seeded_data["perm_id"]
        session.add_all(
            [
                RolePermission(role_id=seeded_data["low_role_id"], permission_id=perm_id),
                RolePermission(role_id=seeded_data["high_role_id"], permission_id=perm_id, conditions={"own": True}),
            ]
        )
        await session.flush()

        rows = await repo.get_grants_for_roles({seeded_data["low_role_id"], seeded_data["high_role_id"]}, session)
        assert {(r.slug, r.role_priority, r.conditions is None) for r in rows} == {
            ("post.create", 10, True),
            ("post.create", 20, False),
        }
        assert await repo.get_grants_for_roles(set(), session) == []

    async def test_roles_granting_permission(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        perm_id = seeded_data["perm_id"]
        assert await repo.get_role_ids_granting(perm_id, session) == set()
        session.add(RolePermission(role_id=seeded_data["high_role_id"], permission_id=perm_id))
        await session.flush()
        assert await repo.get_role_ids_granting(perm_id, session) == {seeded_data["high_role_id"]}

    async def test_permission_map_ignores_unknown(
        self, repo: RBACRepository, session: AsyncSession, seeded_data: dict[str, int]
    ) -> None:
        mapping = await repo.get_permission_map({"post.create", "post.fly"}, session)
        assert mapping == {"post.create": seeded_data["perm_id"]}


class TestDatabaseManager:
    async def test_session_commits_and_rolls_back(self, tmp_path: Path) -> None:
        db = DatabaseManager(DatabaseSettings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'rbac.db'}"))
        await db.create_tables()

        async with db.session() as session:
            session.add(Role(slug="kept", name="Kept"))

        with pytest.raises(RuntimeError):
            async with db.session() as session:
                session.add(Role(slug="dropped", name="Dropped"))
                await session.flush()
                raise RuntimeError("boom")

        async with db.session() as session:
            slugs = [r.slug for r in await RBACRepository().list_roles(session)]
        await db.dispose()

        assert slugs == ["kept"]

    def test_plain_postgres_url_uses_asyncpg(self) -> None:
        settings = DatabaseSettings(database_url="postgresql://forum:secret@db:5432/forum")
        assert settings.database_url == "postgresql+asyncpg://forum:secret@db:5432/forum"
        sqlite = DatabaseSettings(database_url="sqlite+aiosqlite://")
        assert sqlite.database_url == "sqlite+aiosqlite://"
