"""Process-wide delivery components built from settings.

Workers and the scheduler share one dispatcher, runner and publisher per
process. Applications register their event-to-job routes on
``get_job_publisher()`` during startup:

    publisher = get_job_publisher()
    publisher.route("ProjectUpdated", ReindexProject)
"""

from __future__ import annotations

import logging
from functools import lru_cache

from delivery_service.core.settings import (
    get_job_settings,
    get_outbox_settings,
    get_redis_settings,
    get_throttle_settings,
)
from delivery_service.infra.cache.counters import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from delivery_service.infra.database.session import get_session_factory
from delivery_service.infra.events.outbox.dispatcher import OutboxDispatcher
from delivery_service.infra.events.outbox.publisher import JobPublisher
from delivery_service.infra.ratelimit.throttle import JobThrottle
from delivery_service.infra.tasks.dead_letter.store import DeadLetterStore
from delivery_service.infra.tasks.jobs.idempotency import IdempotencyGuard
from delivery_service.infra.tasks.jobs.queue import TaskiqJobQueue
from delivery_service.infra.tasks.jobs.runner import JobRunner

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_counter_store() -> CounterStore:
    redis_settings = get_redis_settings()
    if redis_settings.is_configured:
        return RedisCounterStore.from_settings(redis_settings)
    logger.warning("Redis not configured - throttle and idempotency markers are per-process")
    return InMemoryCounterStore()


@lru_cache(maxsize=1)
def get_job_queue() -> TaskiqJobQueue:
    return TaskiqJobQueue()


@lru_cache(maxsize=1)
def get_job_publisher() -> JobPublisher:
    return JobPublisher(get_job_queue(), settings=get_job_settings())


@lru_cache(maxsize=1)
def get_dispatcher() -> OutboxDispatcher:
    return OutboxDispatcher(
        get_session_factory(),
        get_job_publisher(),
        settings=get_outbox_settings(),
    )


@lru_cache(maxsize=1)
def get_job_runner() -> JobRunner:
    job_settings = get_job_settings()
    store = get_counter_store()
    return JobRunner(
        queue=get_job_queue(),
        dead_letters=DeadLetterStore(get_session_factory()),
        throttle=JobThrottle(store, get_throttle_settings()),
        idempotency=IdempotencyGuard(
            store,
            ttl_seconds=job_settings.idempotency_ttl_seconds,
            key_prefix=job_settings.idempotency_key_prefix,
        ),
        settings=job_settings,
    )


def reset_runtime() -> None:
    """Forget cached components (tests and reconfiguration)."""
    for factory in (get_counter_store, get_job_queue, get_job_publisher, get_dispatcher, get_job_runner):
        factory.cache_clear()


__all__ = [
    "get_counter_store",
    "get_dispatcher",
    "get_job_publisher",
    "get_job_queue",
    "get_job_runner",
    "reset_runtime",
]
