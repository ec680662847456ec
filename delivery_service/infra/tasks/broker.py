"""Taskiq broker and delivery tasks.

Run a worker:
    taskiq worker delivery_service.infra.tasks.broker:broker

Tasks:
    run_job       executes one JobInvocation through the JobRunner. Job retries
                  are scheduled by the runner itself; the task is only
                  retried when the runner could not even requeue the attempt.
    outbox_sweep  one outbox sweep; retried up to 3 times on error.

When RabbitMQ is not configured the module falls back to taskiq's
InMemoryBroker, which runs tasks in-process (development and tests).
"""

from __future__ import annotations

import logging
from typing import Any

from taskiq import AsyncBroker, InMemoryBroker, TaskiqEvents, TaskiqState
from taskiq.middlewares import SimpleRetryMiddleware
from taskiq_aio_pika import AioPikaBroker

from delivery_service.core.settings import get_rabbit_settings
from delivery_service.infra.logging.config import setup_logging

logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()
setup_logging()

SWEEP_MAX_RETRIES = 3
RUN_JOB_MAX_RETRIES = 3


def _create_broker() -> AsyncBroker:
    if rabbit_settings.is_configured:
        queue_name = rabbit_settings.get_prefixed_queue("jobs")
        logger.info("Taskiq broker configured", extra={"queue": queue_name})
        return AioPikaBroker(
            url=rabbit_settings.url,
            queue_name=queue_name,
            declare_exchange=True,
            declare_queues=True,
        ).with_middlewares(SimpleRetryMiddleware(default_retry_count=SWEEP_MAX_RETRIES))

    logger.warning("RabbitMQ not configured - using in-memory task broker")
    return InMemoryBroker().with_middlewares(
        SimpleRetryMiddleware(default_retry_count=SWEEP_MAX_RETRIES),
    )


broker = _create_broker()


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def _close_resources(state: TaskiqState) -> None:
    from delivery_service.infra.database.session import close_database

    await close_database()


@broker.task(
    task_name="delivery.run_job",
    retry_on_error=True,
    max_retries=RUN_JOB_MAX_RETRIES,
)
async def run_job(invocation: dict[str, Any]) -> dict[str, Any]:
    """Run one job attempt."""
    from delivery_service.infra.tasks.runtime import get_job_runner

    result = await get_job_runner().run_raw(invocation)
    return {
        "status": result.status.value,
        "job_id": result.invocation.job_id,
        "job_class": result.invocation.job_class,
        "attempt": result.invocation.attempt,
    }


@broker.task(
    task_name="delivery.outbox_sweep",
    retry_on_error=True,
    max_retries=SWEEP_MAX_RETRIES,
)
async def outbox_sweep(limit: int | None = None) -> dict[str, int]:
    """Process pending, retry reopened and reclaim stuck outbox events."""
    from delivery_service.infra.tasks.runtime import get_dispatcher
    from delivery_service.infra.tasks.sweep import run_outbox_sweep

    result = await run_outbox_sweep(get_dispatcher(), limit)
    return result.as_dict()


__all__ = ["broker", "outbox_sweep", "run_job"]
