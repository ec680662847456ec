"""Job queues: where invocations go to be run later.

``InMemoryJobQueue`` keeps invocations in process (tests and single-process
workers); ``TaskiqJobQueue`` sends them to the taskiq broker, using the
``delay`` label for deferred attempts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from delivery_service.utils.retry import Clock, system_clock

if TYPE_CHECKING:
    from delivery_service.infra.tasks.jobs.base import JobInvocation

logger = logging.getLogger(__name__)


@runtime_checkable
class JobQueue(Protocol):
    async def enqueue(self, invocation: JobInvocation, *, delay_seconds: float = 0) -> None:
        """Schedule ``invocation`` to run no earlier than ``delay_seconds`` from now."""
        ...


@dataclass(frozen=True, slots=True)
class QueuedInvocation:
    invocation: JobInvocation
    delay_seconds: float
    run_at: datetime


class InMemoryJobQueue:
    """Process-local queue with clock-based due times."""

    def __init__(self, clock: Clock = system_clock) -> None:
        self._clock = clock
        self.items: list[QueuedInvocation] = []

    async def enqueue(self, invocation: JobInvocation, *, delay_seconds: float = 0) -> None:
        run_at = self._clock() + timedelta(seconds=delay_seconds)
        self.items.append(QueuedInvocation(invocation, delay_seconds, run_at))

    def pop_due(self) -> list[JobInvocation]:
        """Remove and return invocations whose due time has passed."""
        now = self._clock()
        due = [item for item in self.items if item.run_at <= now]
        self.items = [item for item in self.items if item.run_at > now]
        return [item.invocation for item in due]

    def __len__(self) -> int:
        return len(self.items)


class TaskiqJobQueue:
    """Sends invocations to the ``run_job`` taskiq task."""

    def __init__(self, task: Any | None = None) -> None:
        if task is None:
            from delivery_service.infra.tasks.broker import run_job

            task = run_job
        self._task = task

    async def enqueue(self, invocation: JobInvocation, *, delay_seconds: float = 0) -> None:
        kicker = self._task.kicker().with_labels(queue=invocation.queue)
        if delay_seconds > 0:
            kicker = kicker.with_labels(delay=int(delay_seconds))
        await kicker.kiq(invocation.model_dump(mode="json"))
        logger.debug(
            "Job enqueued",
            extra={
                "job_id": invocation.job_id,
                "job_class": invocation.job_class,
                "attempt": invocation.attempt,
                "delay_seconds": delay_seconds,
            },
        )


__all__ = ["InMemoryJobQueue", "JobQueue", "QueuedInvocation", "TaskiqJobQueue"]
