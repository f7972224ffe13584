"""Database engine layer for the cost-of-carry engine.

Provides the async engine (asyncpg) used by the storage repository and the
scripts. Session factories are configured with autoflush=False and
expire_on_commit=False for explicit transaction control.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import settings
from .models.base import Base

# ---------------------------------------------------------------------------
# Async engine (asyncpg)
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.async_database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=settings.db_pool_pre_ping,
    echo=settings.debug,
)

# Async session factory
async_session_factory = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def create_all_tables(engine: AsyncEngine = async_engine) -> None:
    """Create every table registered on Base.metadata (no-op if present)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(engine: AsyncEngine = async_engine) -> None:
    """Close all pooled connections."""
    await engine.dispose()
