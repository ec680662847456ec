"""APScheduler trigger for the outbox sweep.

APScheduler decides WHEN a sweep runs; taskiq runs it and owns its retries.

Architecture:
    APScheduler (in-process) -> outbox_sweep.kiq() -> RabbitMQ -> Taskiq Worker
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from delivery_service.core.settings import get_outbox_settings

logger = logging.getLogger(__name__)

OUTBOX_SWEEP_JOB_ID = "outbox_sweep"

scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,  # Combine multiple pending executions into one
        "max_instances": 1,  # Only one instance of each job at a time
        "misfire_grace_time": 60,  # Allow 60s delay before considering job missed
    },
)


async def _schedule_outbox_sweep() -> None:
    """Wrapper to properly await the Taskiq kiq() call."""
    from delivery_service.infra.tasks.broker import outbox_sweep

    await outbox_sweep.kiq()


def setup_scheduled_jobs(target: AsyncIOScheduler | None = None) -> None:
    """Register the outbox sweep on a fixed interval."""
    target = target or scheduler
    interval = get_outbox_settings().poll_interval_seconds
    target.add_job(
        func=_schedule_outbox_sweep,
        trigger=IntervalTrigger(seconds=interval),
        id=OUTBOX_SWEEP_JOB_ID,
        name="Outbox sweep",
        replace_existing=True,
    )
    logger.info("Outbox sweep scheduled", extra={"interval_seconds": interval})


def start_scheduler() -> None:
    """Register jobs and start the scheduler. Requires a running event loop."""
    if scheduler.running:
        return
    setup_scheduled_jobs()
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


__all__ = [
    "OUTBOX_SWEEP_JOB_ID",
    "scheduler",
    "setup_scheduled_jobs",
    "start_scheduler",
    "stop_scheduler",
]
