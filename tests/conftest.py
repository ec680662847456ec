"""Pytest configuration and shared fixtures.

This module provides reusable fixtures for testing across the entire test suite.
Fixtures are organized by category to make them easy to discover and extend.

Organization:
    - Environment: keeps tests off PostgreSQL, Redis and RabbitMQ
    - Clock Fixtures: a controllable clock for backoff and window tests
    - Database Fixtures: SQLite engine with the outbox and dead-letter tables
    - Counter Store Fixtures: in-memory counters and Redis mocks
    - Registry Fixtures: isolated event and job registries

When adding new features:
    1. Add fixtures to the appropriate section below
    2. Use @pytest.fixture with clear docstrings
    3. Make fixtures composable (fixtures can depend on other fixtures)
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_settings_caches() -> Iterator[None]:
    """Clear cached settings around every test so env overrides apply."""
    from delivery_service.core.settings import clear_all_caches

    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Clock Fixtures
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to.

    Example:
        clock = FakeClock()
        clock.advance(seconds=60)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Provide a deterministic clock starting on a minute boundary.

    Example:
        def test_window(clock):
            clock.advance(seconds=61)
    """
    return FakeClock()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create async SQLAlchemy engine on a throwaway SQLite file.

    A file (rather than :memory:) lets every session share the same data,
    which the dispatcher needs because it opens one session per step.

    Yields:
        Async SQLAlchemy engine with all tables created.

    Example:
        async def test_with_db(db_engine):
            async with db_engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
    """
    from delivery_service.core.database.base import Base
    from delivery_service.infra.events.outbox import models as _outbox_models  # noqa: F401
    from delivery_service.infra.tasks.dead_letter import models as _dead_letter_models  # noqa: F401

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'delivery.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured the way the service configures it.

    Example:
        async def test_write(session_factory):
            async with session_factory() as session, session.begin():
                ...
    """
    from delivery_service.infra.database.session import build_session_factory

    return build_session_factory(db_engine)


# ============================================================================
# Counter Store Fixtures
# ============================================================================


@pytest.fixture
def counter_store(clock: FakeClock):
    """In-memory counter store driven by the fake clock."""
    from delivery_service.infra.cache.counters import InMemoryCounterStore

    return InMemoryCounterStore(clock)


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Create mock Redis client for counter store testing.

    Returns:
        AsyncMock Redis client; configure return values per test.

    Example:
        async def test_increment(mock_redis_client):
            mock_redis_client.eval.return_value = 1
    """
    client = AsyncMock()
    client.eval.return_value = 1
    client.decr.return_value = 0
    client.get.return_value = None
    client.set.return_value = True
    return client


# ============================================================================
# Queue and Registry Fixtures
# ============================================================================


@pytest.fixture
def job_queue(clock: FakeClock):
    """In-memory job queue whose due times follow the fake clock."""
    from delivery_service.infra.tasks.jobs.queue import InMemoryJobQueue

    return InMemoryJobQueue(clock)


@pytest.fixture
def job_registry():
    """Fresh job registry, isolated from the global one."""
    from delivery_service.infra.tasks.jobs.registry import JobRegistry

    return JobRegistry()


@pytest.fixture
def event_registry():
    """Fresh event payload registry, isolated from the global one."""
    from delivery_service.core.events.registry import EventRegistry

    return EventRegistry()
