"""
Database Session Management Module.

Provides async database session management using SQLAlchemy 2.0+ async patterns.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from vaultcore.database.engine import close_engine, get_engine


# Global session factory (initialized lazily)
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the async session factory.

    Returns:
        async_sessionmaker[AsyncSession]: Session factory for creating database sessions.
    """
    global _async_session_factory

    if _async_session_factory is None:
        _async_session_factory = create_session_factory(get_engine())

    return _async_session_factory


@asynccontextmanager
async def get_standalone_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Commits on success and rolls back on error.

    Yields:
        AsyncSession: Database session with automatic cleanup.

    Example:
        async with get_standalone_session() as session:
            user = await session.get(User, user_id)
    """
    session_factory = session_factory or get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_database(engine: Optional[AsyncEngine] = None) -> None:
    """
    Initialize database schema.

    Creates all tables defined in models if they don't exist.
    """
    from vaultcore.database.base import Base
    import vaultcore.database.models  # noqa: F401 - Import to register models with Base.metadata

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_connections() -> None:
    """
    Close all database connections.

    Should be called during application shutdown.
    """
    global _async_session_factory

    await close_engine()
    _async_session_factory = None
