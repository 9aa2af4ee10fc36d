"""
Database Configuration

Async SQLAlchemy engine and session management.

The engine is a storage handle with an explicit lifecycle:
- ``init_db()`` opens it on application startup
- ``get_db()`` scopes one session to one request and always releases it
- ``close_db()`` disposes the pool on shutdown
"""

import logging
from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from idv.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


engine: AsyncEngine | None = None
async_session_maker: async_sessionmaker[AsyncSession] | None = None


async def init_db() -> AsyncEngine:
    """
    Create the engine and session factory, then verify connectivity.

    Call this on application startup.
    """
    global engine, async_session_maker

    engine = create_async_engine(
        settings.database_url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )
    async_session_maker = async_sessionmaker(engine, expire_on_commit=False)

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    logger.info("Database engine initialised")
    return engine


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency yielding a session for the duration of a request.

    Any transaction still open when the request fails is rolled back before
    the connection goes back to the pool.
    """
    if async_session_maker is None:
        raise RuntimeError("Database is not initialised. Call init_db() on startup.")

    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def ping_db() -> bool:
    """Readiness probe: True when a trivial query succeeds."""
    if engine is None:
        return False
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


async def close_db() -> None:
    """Dispose the connection pool."""
    global engine, async_session_maker
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session_maker = None
