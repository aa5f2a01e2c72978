"""Engine and session lifecycle for the RBAC store."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Self

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from forum_rbac.config.database import DatabaseSettings
from forum_rbac.db import models as _models  # noqa: F401  registers tables on Base.metadata
from forum_rbac.db.base import Base


def _engine_options(settings: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.echo, "pool_pre_ping": settings.pool_pre_ping}
    if settings.use_null_pool:
        options["poolclass"] = NullPool
    elif not settings.database_url.startswith("sqlite"):
        options["pool_size"] = settings.pool_size
        options["max_overflow"] = settings.max_overflow
    return options


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions.

    Every RBAC service takes the session as its last argument and only
    flushes; the ``session()`` block decides whether the work is committed::

        db = DatabaseManager.from_env()
        rbac = build_rbac()

        async with db.session() as session:
            await rbac.admin.assign_role(user_id, role_id, session)

        await db.dispose()
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._engine = create_async_engine(settings.database_url, **_engine_options(settings))
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_env(cls) -> Self:
        """Build from ``DATABASE_URL`` and the other environment settings."""
        return cls(DatabaseSettings())

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session; commit when the block exits cleanly, roll back otherwise."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dependency(self) -> AsyncGenerator[AsyncSession]:
        """Session provider for ``Depends()``; also what ``request.state.db_session`` is set from."""
        async with self.session() as session:
            yield session

    async def create_tables(self) -> None:
        """Create any missing user and RBAC tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()
