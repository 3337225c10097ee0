"""Engine and session factory for the store.

PostgreSQL (asyncpg) is the production store; SQLite (aiosqlite) is
accepted for local runs and tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from carepath.config import get_settings

if TYPE_CHECKING:
    from carepath.config import Settings


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create the async engine for the configured database url.

    Args:
        settings: Settings override (defaults to get_settings())

    Returns:
        AsyncEngine with pre-ping enabled
    """
    settings = settings or get_settings()
    if settings.database_url.startswith("sqlite"):
        # SQLite uses a single-connection pool; sizing args do not apply
        return create_async_engine(settings.database_url)

    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_pool_max_overflow,
        echo=settings.environment == "development",
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded attributes after commit; services return rows past it."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    from carepath.infra import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine(engine: AsyncEngine) -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()
