"""Database session management with psycopg3 async driver.

The engine is created lazily from ``PostgresSettings`` on first use. When
no database is configured the module falls back to a local SQLite file
through aiosqlite so workers and tests can run without PostgreSQL.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from delivery_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from delivery_service.core.settings import PostgresSettings

logger = logging.getLogger(__name__)

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./delivery.db"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(db_settings: PostgresSettings | None = None, url: str | None = None) -> AsyncEngine:
    """Create an async engine from settings or an explicit URL.

    Pool options only apply to PostgreSQL; SQLite uses SQLAlchemy defaults.
    """
    db_settings = db_settings or get_db_settings()
    if url is None and db_settings.is_configured:
        return create_async_engine(db_settings.url, **db_settings.engine_kwargs())
    return create_async_engine(url or SQLITE_FALLBACK_URL, echo=db_settings.echo)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed.

    Example:
        async with get_async_session() as session:
            async with session.begin():
                await OutboxWriter(session).add(...)
    """
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database() -> None:
    """Verify connectivity. Schema is managed by Alembic."""
    engine = get_engine()
    logger.info("Initializing database connection", extra={"dialect": engine.dialect.name})
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Failed to connect to database", extra={"error": str(e)})
        raise
    logger.info("Database connection established successfully")


async def close_database() -> None:
    """Dispose the engine and forget the cached factory."""
    global _engine, _session_factory
    if _engine is None:
        return
    logger.info("Closing database connection")
    engine, _engine, _session_factory = _engine, None, None
    await engine.dispose()


__all__ = [
    "build_engine",
    "build_session_factory",
    "close_database",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
