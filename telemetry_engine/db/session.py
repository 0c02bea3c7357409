"""
Async database engine and session factory.

Uses SQLAlchemy 2.x async engine with asyncpg for PostgreSQL in production
and aiosqlite for local runs and tests. Engines are built from an explicit
URL so each application (or test) owns its own engine.

CHANGELOG:
- 2026-02-21: Build engines from settings instead of module-level singletons
- 2026-02-20: Initial creation
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from telemetry_engine.db.models import Base


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        database_url: Async driver URL, e.g. ``postgresql+asyncpg://...``.

    Returns:
        AsyncEngine: Configured async engine.
    """
    return create_async_engine(database_url, echo=False)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to ``engine``.

    Args:
        engine: The async engine sessions will use.

    Returns:
        async_sessionmaker: Factory for creating AsyncSession instances.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from the ORM metadata.

    Used for SQLite development databases and tests; PostgreSQL
    deployments run the Alembic migrations instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
