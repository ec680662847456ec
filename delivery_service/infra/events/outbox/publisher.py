"""Publishers consumed by the outbox dispatcher.

A publisher receives each claimed event once per attempt. Raising marks
the attempt failed; returning marks the event published. Publishers must
tolerate being called again for an event they already handled, since a
crash between publish and status update causes a redelivery.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from delivery_service.core.settings import JobSettings, get_job_settings
from delivery_service.infra.tasks.jobs.idempotency import derive_idempotency_key

if TYPE_CHECKING:
    from delivery_service.infra.events.outbox.models import OutboxEvent
    from delivery_service.infra.tasks.jobs.base import IdempotentJob, JobInvocation
    from delivery_service.infra.tasks.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

PayloadMapper = Callable[["OutboxEvent"], Mapping[str, Any]]


@runtime_checkable
class Publisher(Protocol):
    async def publish(self, event: OutboxEvent) -> None:
        """Hand the event to its downstream consumers."""
        ...


@dataclass(frozen=True, slots=True)
class JobRoute:
    job_class: type[IdempotentJob]
    payload_mapper: PayloadMapper | None = None


class JobPublisher:
    """Turns outbox events into job invocations.

    Each route enqueues one invocation per event. Job ids and idempotency
    keys are derived from the event id, so a redelivered event maps onto
    the same jobs while two events with equal payloads stay distinct.

    Example:
        publisher = JobPublisher(TaskiqJobQueue())
        publisher.route("ProjectUpdated", ReindexProject)
        publisher.route("ProjectUpdated", InvalidateProjectCache)
    """

    def __init__(self, queue: JobQueue, *, settings: JobSettings | None = None) -> None:
        self.queue = queue
        self.settings = settings or get_job_settings()
        self._routes: dict[str, list[JobRoute]] = {}

    def route(
        self,
        event_type: str,
        job_class: type[IdempotentJob],
        *,
        payload_mapper: PayloadMapper | None = None,
    ) -> None:
        routes = self._routes.setdefault(event_type, [])
        if any(existing.job_class is job_class for existing in routes):
            raise ValueError(f"{job_class.job_name()} already routed for '{event_type}'")
        routes.append(JobRoute(job_class, payload_mapper))

    def routes_for(self, event_type: str) -> list[JobRoute]:
        return list(self._routes.get(event_type, ()))

    def build_invocations(self, event: OutboxEvent) -> list[JobInvocation]:
        invocations = []
        for route in self._routes.get(event.event_type, ()):
            payload = route.payload_mapper(event) if route.payload_mapper else event.payload
            invocation = route.job_class.build_invocation(
                payload,
                tenant_id=event.tenant_id,
                user_id=event.user_id,
                correlation_id=event.correlation_id,
                default_max_attempts=self.settings.default_max_attempts,
                default_queue=self.settings.default_queue,
            )
            action = route.job_class.action_name()
            key = derive_idempotency_key(
                event.tenant_id,
                event.user_id,
                action,
                {"outbox_event_id": event.id, "payload": invocation.payload},
            )
            invocations.append(
                invocation.model_copy(
                    update={"job_id": f"outbox-{event.id}-{action}", "idempotency_key": key},
                ),
            )
        return invocations

    async def publish(self, event: OutboxEvent) -> None:
        invocations = self.build_invocations(event)
        if not invocations:
            logger.debug(
                "No jobs routed for event type",
                extra={"event_id": event.id, "event_type": event.event_type},
            )
            return

        for invocation in invocations:
            await self.queue.enqueue(invocation)

        logger.debug(
            "Event fanned out to jobs",
            extra={
                "event_id": event.id,
                "event_type": event.event_type,
                "jobs": [inv.job_class for inv in invocations],
            },
        )


__all__ = ["JobPublisher", "JobRoute", "PayloadMapper", "Publisher"]
