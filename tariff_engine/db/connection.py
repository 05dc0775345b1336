"""
Database Connection Management
Async engines and session makers for the reference and calculation stores
Source: https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
Verified: 2026-10-19
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from tariff_engine.core.config import EngineSettings, get_engine_settings
from tariff_engine.models import Base
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def create_engine_from_settings(settings: Optional[EngineSettings] = None) -> AsyncEngine:
    """
    Build an async engine for the configured database.

    SQLite files get NullPool so every session opens its own connection;
    PostgreSQL (asyncpg) uses a pre-pinged QueuePool sized from settings.
    """
    settings = settings or get_engine_settings()
    url = settings.DATABASE_URL
    # Never log credentials
    logger.info(f"Opening database engine for {url.split('@')[-1]}")

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DB_ECHO, poolclass=NullPool)

    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Stores read attributes after commit and flush explicitly
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    """Process-wide engine, built from settings on first use."""
    global _engine

    if _engine is None:
        _engine = create_engine_from_settings()
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Process-wide session maker bound to get_engine()."""
    global _session_maker

    if _session_maker is None:
        _session_maker = make_session_maker(get_engine())
    return _session_maker


@asynccontextmanager
async def session_scope(
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Unit of work: commit when the block exits cleanly, roll back otherwise.

    Used for reference-data maintenance (tariff edits, factor freezing);
    calculation commits manage their own transaction in the store.
    """
    session_maker = session_maker or get_session_maker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Reference data transaction rolled back")
            raise


async def create_all(engine: Optional[AsyncEngine] = None) -> None:
    """Create every engine table. Deployments manage schema with migrations."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Created {len(Base.metadata.tables)} tables")


async def dispose_engine() -> None:
    """Dispose the process-wide engine and forget the session maker."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_maker = None


async def check_db_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """True when the database answers a trivial query."""
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
    return True
