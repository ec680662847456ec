"""Tests for process-wide component wiring and outbox row helpers."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from delivery_service.infra.cache.counters import InMemoryCounterStore
from delivery_service.infra.events.outbox import OutboxEvent, OutboxStatus
from delivery_service.infra.tasks import runtime


@pytest.fixture(autouse=True)
def _fresh_runtime():
    runtime.reset_runtime()
    yield
    runtime.reset_runtime()


@pytest.mark.unit
class TestRuntime:
    """Cached components built from settings."""

    def test_counter_store_falls_back_to_memory(self):
        """Without Redis configured, counters live in process."""
        store = runtime.get_counter_store()

        assert isinstance(store, InMemoryCounterStore)
        assert runtime.get_counter_store() is store

    def test_reset_builds_new_components(self):
        """reset_runtime forgets cached instances."""
        first = runtime.get_counter_store()
        runtime.reset_runtime()

        assert runtime.get_counter_store() is not first


def _event(status: OutboxStatus, attempts: int = 0, **kwargs) -> OutboxEvent:
    return OutboxEvent(status=status.value, attempts=attempts, max_attempts=3, **kwargs)


@pytest.mark.unit
class TestOutboxEventState:
    """Terminal and due checks on outbox rows."""

    @pytest.mark.parametrize(
        ("status", "attempts", "terminal"),
        [
            (OutboxStatus.PENDING, 0, False),
            (OutboxStatus.PROCESSING, 1, False),
            (OutboxStatus.PUBLISHED, 0, True),
            (OutboxStatus.FAILED, 2, False),
            (OutboxStatus.FAILED, 3, True),
        ],
    )
    def test_is_terminal(self, status, attempts, terminal):
        """Published rows and failed rows out of attempts are terminal."""
        assert _event(status, attempts).is_terminal is terminal

    def test_is_due(self):
        """Rows without a retry time are due; otherwise once it passes."""
        now = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)

        assert _event(OutboxStatus.PENDING).is_due(now)
        assert _event(OutboxStatus.PENDING, next_retry_at=now - timedelta(seconds=1)).is_due(now)
        assert not _event(OutboxStatus.PENDING, next_retry_at=now + timedelta(seconds=1)).is_due(now)
        # Naive values as read back from SQLite are treated as UTC
        assert _event(OutboxStatus.PENDING, next_retry_at=datetime(2026, 1, 5, 11, 59)).is_due(now)
