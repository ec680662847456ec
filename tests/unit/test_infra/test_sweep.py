"""Tests for the scheduled outbox sweep and its trigger."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from delivery_service.core.events import EventRegistry
from delivery_service.core.settings import OutboxSettings
from delivery_service.infra.events.outbox import OutboxDispatcher, OutboxWriter
from delivery_service.infra.metrics.prometheus import REGISTRY
from delivery_service.infra.tasks.scheduler import OUTBOX_SWEEP_JOB_ID, setup_scheduled_jobs
from delivery_service.infra.tasks.sweep import SweepResult, run_outbox_sweep


class RecordingPublisher:
    def __init__(self) -> None:
        self.published: list[int] = []

    async def publish(self, event) -> None:
        self.published.append(event.id)


def mock_dispatcher(batch_size: int = 10) -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.settings = OutboxSettings(batch_size=batch_size)
    dispatcher.process_pending_events = AsyncMock(return_value=4)
    dispatcher.retry_failed_events = AsyncMock(return_value=1)
    dispatcher.reclaim_stuck_events = AsyncMock(return_value=0)
    return dispatcher


def sweep_runs(result: str) -> float:
    return REGISTRY.get_sample_value("outbox_sweep_runs_total", {"result": result}) or 0.0


@pytest.mark.unit
class TestRunOutboxSweep:
    """One sweep: pending, then reopened failures, then stuck claims."""

    @pytest.mark.asyncio
    async def test_sweep_publishes_committed_events(self, session_factory, clock):
        """Committed events are published by a single sweep."""
        async with session_factory() as session, session.begin():
            writer = OutboxWriter(session, settings=OutboxSettings(), registry=EventRegistry(), clock=clock)
            for n in range(3):
                await writer.add("project", f"p-{n}", "ProjectUpdated", {"n": n}, {"tenant_id": "acme"})

        publisher = RecordingPublisher()
        dispatcher = OutboxDispatcher(
            session_factory,
            publisher,
            settings=OutboxSettings(worker_id="worker-1"),
            clock=clock,
        )
        before = sweep_runs("success")

        result = await run_outbox_sweep(dispatcher)

        assert result == SweepResult(processed=3, retried=0, reclaimed=0)
        assert len(publisher.published) == 3
        assert sweep_runs("success") == before + 1

    @pytest.mark.asyncio
    async def test_retry_pass_uses_half_the_limit(self):
        """Retries get half the batch so fresh events are not starved."""
        dispatcher = mock_dispatcher(batch_size=10)

        result = await run_outbox_sweep(dispatcher)

        dispatcher.process_pending_events.assert_awaited_once_with(10)
        dispatcher.retry_failed_events.assert_awaited_once_with(5)
        dispatcher.reclaim_stuck_events.assert_awaited_once_with(10)
        assert result.as_dict() == {"processed": 4, "retried": 1, "reclaimed": 0}

    @pytest.mark.asyncio
    async def test_small_limit_still_retries(self):
        """A limit of one still allows one retry."""
        dispatcher = mock_dispatcher()

        await run_outbox_sweep(dispatcher, limit=1)

        dispatcher.retry_failed_events.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        """A failing step is re-raised for the task's retry policy."""
        dispatcher = mock_dispatcher()
        dispatcher.process_pending_events.side_effect = ConnectionError("database unavailable")
        before = sweep_runs("error")

        with pytest.raises(ConnectionError, match="database unavailable"):
            await run_outbox_sweep(dispatcher)

        dispatcher.retry_failed_events.assert_not_awaited()
        assert sweep_runs("error") == before + 1


@pytest.mark.unit
class TestSweepSchedule:
    """APScheduler registration."""

    def test_sweep_registered_on_poll_interval(self):
        """The sweep runs every poll interval, 60 seconds by default."""
        scheduler = AsyncIOScheduler(timezone="UTC")

        setup_scheduled_jobs(scheduler)

        job = scheduler.get_job(OUTBOX_SWEEP_JOB_ID)
        assert job is not None
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval == timedelta(seconds=60)

    def test_interval_follows_settings(self, monkeypatch):
        """OUTBOX_POLL_INTERVAL_SECONDS changes the sweep interval."""
        monkeypatch.setenv("OUTBOX_POLL_INTERVAL_SECONDS", "15")
        scheduler = AsyncIOScheduler(timezone="UTC")

        setup_scheduled_jobs(scheduler)

        assert scheduler.get_job(OUTBOX_SWEEP_JOB_ID).trigger.interval == timedelta(seconds=15)
