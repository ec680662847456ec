"""Outbox dispatcher: claims, publishes and retries outbox events.

Each sweep:
1. Selects claimable event ids (FOR UPDATE SKIP LOCKED, oldest first)
2. Claims each event in its own short transaction (compare-and-set)
3. Calls the publisher outside any transaction, bounded by a timeout
4. Records the outcome only if this worker still owns the claim

Ordering is FIFO within a batch. There is no global order across
dispatcher instances or aggregates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING

from opentelemetry import trace

from delivery_service.core.exceptions import ClaimLostError
from delivery_service.core.settings import OutboxSettings, get_outbox_settings
from delivery_service.infra.events.outbox.models import OutboxEvent, OutboxStatus
from delivery_service.infra.events.outbox.repository import OutboxRepository
from delivery_service.infra.metrics.prometheus import (
    outbox_claim_conflicts_total,
    outbox_events_published_total,
    outbox_events_reclaimed_total,
    outbox_publish_duration_seconds,
    outbox_publish_failures_total,
)
from delivery_service.utils.retry import BackoffPolicy, Clock, system_clock

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from delivery_service.infra.events.outbox.publisher import Publisher

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class OutboxDispatcher:
    """Poll-based outbox dispatcher.

    Safe to run concurrently from any number of workers: claiming is
    exclusive, and a worker that loses a claim simply skips the event.

    Example:
        dispatcher = OutboxDispatcher(get_session_factory(), JobPublisher(queue))
        processed = await dispatcher.process_pending_events()
        retried = await dispatcher.retry_failed_events()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Publisher,
        *,
        settings: OutboxSettings | None = None,
        backoff: BackoffPolicy | None = None,
        clock: Clock = system_clock,
        worker_id: str | None = None,
        repository: OutboxRepository | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.publisher = publisher
        self.settings = settings or get_outbox_settings()
        self.backoff = backoff or BackoffPolicy.from_settings(self.settings)
        self.worker_id = worker_id or self.settings.worker_id
        self.repository = repository or OutboxRepository()
        self._clock = clock

    async def process_pending_events(self, limit: int | None = None) -> int:
        """Publish due ``pending`` events.

        Returns:
            Number of events this worker claimed and attempted.
        """
        return await self._dispatch(OutboxStatus.PENDING, limit or self.settings.batch_size)

    async def retry_failed_events(self, limit: int | None = None) -> int:
        """Re-attempt ``failed`` events that still have attempts left.

        Terminal events (attempts >= max_attempts) are never selected.
        """
        return await self._dispatch(OutboxStatus.FAILED, limit or self.settings.retry_batch_size)

    async def reclaim_stuck_events(self, limit: int | None = None) -> int:
        """Release claims older than the visibility timeout.

        Returns:
            Number of events reclaimed.
        """
        now = self._clock()
        claimed_before = now - timedelta(seconds=self.settings.visibility_timeout_seconds)
        async with self.session_factory() as session, session.begin():
            reclaimed = await self.repository.reclaim_stuck(
                session,
                claimed_before=claimed_before,
                now=now,
                backoff=self.backoff,
                limit=limit or self.settings.batch_size,
            )

        for event_id, status in reclaimed:
            outbox_events_reclaimed_total.labels(outcome=status.value).inc()
            log = logger.error if status is OutboxStatus.FAILED else logger.warning
            log(
                "Reclaimed stuck outbox event",
                extra={
                    "event_id": event_id,
                    "status": status.value,
                    "visibility_timeout": self.settings.visibility_timeout_seconds,
                },
            )
        return len(reclaimed)

    async def _dispatch(self, status: OutboxStatus, limit: int) -> int:
        async with self.session_factory() as session, session.begin():
            event_ids = await self.repository.claimable_ids(
                session,
                status=status,
                now=self._clock(),
                limit=limit,
            )

        if not event_ids:
            return 0

        logger.debug(
            "Processing outbox batch",
            extra={"status": status.value, "candidates": len(event_ids)},
        )

        processed = 0
        for event_id in event_ids:
            event = await self._claim(event_id, status)
            if event is None:
                continue
            await self._publish(event)
            processed += 1

        if processed:
            logger.info(
                "Outbox batch processed",
                extra={"status": status.value, "processed": processed, "candidates": len(event_ids)},
            )
        return processed

    async def _claim(self, event_id: int, status: OutboxStatus) -> OutboxEvent | None:
        async with self.session_factory() as session, session.begin():
            event = await self.repository.claim(
                session,
                event_id,
                expected_status=status,
                worker_id=self.worker_id,
                now=self._clock(),
            )
        if event is None:
            outbox_claim_conflicts_total.labels(stage="claim").inc()
            logger.debug("Event already claimed, skipping", extra={"event_id": event_id})
        return event

    async def _publish(self, event: OutboxEvent) -> None:
        attributes = {
            "outbox.event_id": event.id,
            "outbox.event_type": event.event_type,
            "outbox.attempt": event.attempts + 1,
        }
        with tracer.start_as_current_span("outbox.publish", attributes=attributes) as span:
            start = time.perf_counter()
            error: str | None = None
            try:
                await asyncio.wait_for(
                    self.publisher.publish(event),
                    timeout=self.settings.publish_timeout_seconds,
                )
            except TimeoutError:
                error = f"publish timed out after {self.settings.publish_timeout_seconds}s"
            except Exception as exc:
                span.record_exception(exc)
                error = f"{type(exc).__name__}: {exc}"
            outbox_publish_duration_seconds.labels(event_type=event.event_type).observe(
                time.perf_counter() - start,
            )

        try:
            if error is None:
                await self._record_success(event)
            else:
                await self._record_failure(event, error)
        except ClaimLostError as exc:
            outbox_claim_conflicts_total.labels(stage="record").inc()
            logger.warning(exc.detail, extra=exc.extra)

    async def _record_success(self, event: OutboxEvent) -> None:
        async with self.session_factory() as session, session.begin():
            recorded = await self.repository.mark_published(
                session,
                event.id,
                worker_id=self.worker_id,
                now=self._clock(),
            )
        if not recorded:
            raise self._claim_lost(event, "published")

        outbox_events_published_total.labels(event_type=event.event_type).inc()
        logger.debug(
            "Event published successfully",
            extra={"event_id": event.id, "event_type": event.event_type},
        )

    async def _record_failure(self, event: OutboxEvent, error: str) -> None:
        error = error[: self.settings.error_message_max_length]
        async with self.session_factory() as session, session.begin():
            status = await self.repository.mark_failed(
                session,
                event.id,
                worker_id=self.worker_id,
                error_message=error,
                now=self._clock(),
                backoff=self.backoff,
            )
        if status is None:
            raise self._claim_lost(event, "failed")

        attempts = event.attempts + 1
        extra = {
            "event_id": event.id,
            "event_type": event.event_type,
            "tenant_id": event.tenant_id,
            "attempts": attempts,
            "max_attempts": event.max_attempts,
            "error": error,
        }
        if status is OutboxStatus.FAILED:
            outbox_publish_failures_total.labels(event_type=event.event_type, outcome="terminal").inc()
            logger.error("Publish failed, attempts exhausted; event needs operator review", extra=extra)
        else:
            outbox_publish_failures_total.labels(
                event_type=event.event_type,
                outcome="retry_scheduled",
            ).inc()
            logger.warning(
                "Publish failed, retry scheduled",
                extra={**extra, "retry_in_seconds": self.backoff.delay(attempts)},
            )

    def _claim_lost(self, event: OutboxEvent, outcome: str) -> ClaimLostError:
        return ClaimLostError(
            detail="Claim lost before outcome could be recorded",
            extra={"event_id": event.id, "worker_id": self.worker_id, "outcome": outcome},
        )


__all__ = ["OutboxDispatcher"]
