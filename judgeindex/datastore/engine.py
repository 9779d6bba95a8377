"""
Database engine configuration and lifecycle
Async SQLAlchemy engine, SQLite via aiosqlite by default
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from judgeindex.datastore.models import Base
from judgeindex.settings import global_settings

# Process-wide engine instance
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


async def create_tables(target: AsyncEngine) -> None:
    """Create all tables on the given engine"""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(database_url: str | None = None) -> None:
    """Initialise the database connection and schema"""
    global engine, AsyncSessionLocal

    engine = create_async_engine(
        database_url or global_settings.database_url,
        echo=global_settings.database_echo,
        future=True,
    )

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    await create_tables(engine)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session (generator, for dependency injection)"""
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def close_db() -> None:
    """Dispose of the engine"""
    global engine, AsyncSessionLocal
    if engine:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for jobs that open their own sessions"""
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return AsyncSessionLocal
