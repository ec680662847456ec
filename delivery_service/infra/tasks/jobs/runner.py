"""Idempotent job runner.

``JobRunner.run`` wraps a single attempt of a job:

1. Restore tenant/user context (``tenant_scope``), released on every exit path
2. Reject invocations that can never succeed (unknown job, missing tenant,
   invalid payload) straight to the dead-letter store
3. Skip work whose idempotency key is already marked completed
4. Ask the tenant throttle for admission; if refused, re-enqueue the same
   attempt after a fixed delay without consuming an attempt
5. Execute and act on the typed outcome: mark completed, schedule the next
   attempt with backoff, or dead-letter when attempts are exhausted
6. If scheduling the retry or writing the dead-letter entry fails, put the
   same attempt back on the queue; if even that fails, raise so the
   broker task retries the whole run
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

from delivery_service.core.exceptions import (
    CounterStoreError,
    DeliveryError,
    PayloadValidationError,
    TenantContextError,
    UnknownJobError,
)
from delivery_service.core.settings import JobSettings, get_job_settings
from delivery_service.infra.metrics.prometheus import job_duration_seconds, job_runs_total
from delivery_service.infra.tasks.jobs.base import (
    FatalError,
    JobInvocation,
    JobOutcome,
    JobSucceeded,
    RetryableError,
)
from delivery_service.infra.tasks.jobs.context import JobContext, tenant_scope
from delivery_service.infra.tasks.jobs.registry import JobRegistry, job_registry
from delivery_service.utils.retry import BackoffPolicy

if TYPE_CHECKING:
    from delivery_service.infra.ratelimit.throttle import JobThrottle
    from delivery_service.infra.tasks.dead_letter.store import DeadLetterStore
    from delivery_service.infra.tasks.jobs.base import IdempotentJob
    from delivery_service.infra.tasks.jobs.idempotency import IdempotencyGuard
    from delivery_service.infra.tasks.jobs.queue import JobQueue

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class JobRunStatus(StrEnum):
    SUCCEEDED = "succeeded"
    DUPLICATE = "duplicate"
    THROTTLED = "throttled"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    REQUEUED = "requeued"


@dataclass(frozen=True, slots=True)
class JobRunResult:
    status: JobRunStatus
    invocation: JobInvocation
    outcome: JobOutcome | None = None
    delay_seconds: float | None = None


class JobRunner:
    """Runs job invocations with throttling, dedup and dead-letter escalation.

    Example:
        runner = JobRunner(
            queue=TaskiqJobQueue(),
            dead_letters=DeadLetterStore(get_session_factory()),
            throttle=JobThrottle(counter_store),
            idempotency=IdempotencyGuard(counter_store),
        )
        result = await runner.run(invocation)
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        dead_letters: DeadLetterStore,
        throttle: JobThrottle | None = None,
        idempotency: IdempotencyGuard | None = None,
        registry: JobRegistry = job_registry,
        settings: JobSettings | None = None,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self.queue = queue
        self.dead_letters = dead_letters
        self.throttle = throttle
        self.idempotency = idempotency
        self.registry = registry
        self.settings = settings or get_job_settings()
        self.backoff = backoff or BackoffPolicy.from_settings(self.settings)

    async def run(self, invocation: JobInvocation) -> JobRunResult:
        context = JobContext.from_invocation(invocation)
        with tenant_scope(context):
            result = await self._run(invocation, context)
        job_runs_total.labels(job_class=invocation.job_class, status=result.status.value).inc()
        return result

    async def run_raw(self, data: dict[str, Any]) -> JobRunResult:
        """Entry point for broker tasks, which carry the invocation as a dict."""
        return await self.run(JobInvocation.model_validate(data))

    async def _run(self, invocation: JobInvocation, context: JobContext) -> JobRunResult:
        try:
            job_class = self.registry.get(invocation.job_class)
            if job_class.requires_tenant:
                context.require_tenant()
            payload = job_class.parse_payload(invocation.payload)
        except (UnknownJobError, TenantContextError, PayloadValidationError) as exc:
            logger.error(
                "Job rejected before execution",
                extra={**context.log_fields(), "error": exc.detail, "error_type": exc.type},
            )
            outcome = FatalError(message=exc.detail, exception_class=type(exc).__name__)
            return await self._dead_letter(invocation, outcome)

        if await self._already_completed(invocation):
            logger.info("Duplicate invocation skipped", extra=context.log_fields())
            return JobRunResult(JobRunStatus.DUPLICATE, invocation)

        if not await self._admit(invocation):
            delay = self.settings.throttle_reschedule_delay_seconds
            await self.queue.enqueue(invocation, delay_seconds=delay)
            return JobRunResult(JobRunStatus.THROTTLED, invocation, delay_seconds=delay)

        outcome = await self._execute(job_class, context, payload)

        match outcome:
            case JobSucceeded():
                await self._mark_completed(invocation)
                return JobRunResult(JobRunStatus.SUCCEEDED, invocation, outcome)
            case RetryableError() if not invocation.is_final_attempt:
                return await self._schedule_retry(invocation, job_class, outcome)
            case _:
                return await self._dead_letter(invocation, outcome)

    async def _execute(
        self,
        job_class: type[IdempotentJob],
        context: JobContext,
        payload: Any,
    ) -> JobOutcome:
        attributes = {
            "job.class": context.job_class,
            "job.attempt": context.attempt,
            "job.tenant_id": context.tenant_id or "",
        }
        with tracer.start_as_current_span("job.execute", attributes=attributes) as span:
            start = time.perf_counter()
            try:
                outcome = await job_class().execute(context, payload)
            except (TenantContextError, PayloadValidationError) as exc:
                # Retrying cannot fix a context or schema problem
                span.record_exception(exc)
                outcome = FatalError(message=exc.detail, exception_class=type(exc).__name__)
            except Exception as exc:
                span.record_exception(exc)
                logger.exception("Job raised", extra=context.log_fields())
                outcome = RetryableError.from_exception(exc)
            finally:
                job_duration_seconds.labels(job_class=context.job_class).observe(
                    time.perf_counter() - start,
                )
        return JobSucceeded() if outcome is None else outcome

    async def _admit(self, invocation: JobInvocation) -> bool:
        if self.throttle is None:
            return True
        tenant, queue = invocation.tenant_id, invocation.queue
        if self.throttle.settings.strict_admission:
            return await self.throttle.acquire(tenant, queue)
        if not await self.throttle.can_dispatch(tenant, queue):
            return False
        await self.throttle.record_dispatch(tenant, queue)
        return True

    async def _already_completed(self, invocation: JobInvocation) -> bool:
        if self.idempotency is None:
            return False
        try:
            return await self.idempotency.is_completed(invocation.idempotency_key)
        except CounterStoreError as exc:
            # Consumers are idempotent themselves; running again is safe
            logger.warning(
                "Idempotency check unavailable, executing",
                extra={"job_id": invocation.job_id, "error": exc.detail},
            )
            return False

    async def _mark_completed(self, invocation: JobInvocation) -> None:
        if self.idempotency is None:
            return
        try:
            await self.idempotency.mark_completed(invocation.idempotency_key)
        except CounterStoreError as exc:
            logger.warning(
                "Could not record job completion",
                extra={"job_id": invocation.job_id, "error": exc.detail},
            )

    async def _schedule_retry(
        self,
        invocation: JobInvocation,
        job_class: type[IdempotentJob],
        outcome: RetryableError,
    ) -> JobRunResult:
        delay = invocation.retry_delay(job_class.backoff or self.backoff)
        logger.warning(
            "Job failed, retry scheduled",
            extra={
                "job_id": invocation.job_id,
                "job_class": invocation.job_class,
                "tenant_id": invocation.tenant_id,
                "user_id": invocation.user_id,
                "idempotency_key": invocation.idempotency_key,
                "attempt": invocation.attempt,
                "max_attempts": invocation.max_attempts,
                "retry_in_seconds": delay,
                "error": outcome.message,
                "error_type": outcome.exception_class,
            },
        )
        try:
            await self.queue.enqueue(invocation.next_attempt(), delay_seconds=delay)
        except Exception as exc:
            return await self._requeue(invocation, exc, stage="retry")
        return JobRunResult(JobRunStatus.RETRY_SCHEDULED, invocation, outcome, delay)

    async def _dead_letter(
        self,
        invocation: JobInvocation,
        outcome: object,
    ) -> JobRunResult:
        if not isinstance(outcome, RetryableError | FatalError):
            outcome = FatalError(
                message=f"execute() returned {type(outcome).__name__}, expected a job outcome",
                exception_class=DeliveryError.__name__,
            )
        try:
            await self.dead_letters.move(
                invocation.job_id,
                invocation.job_class,
                invocation.payload,
                outcome.message,
                exception_class=outcome.exception_class,
                attempts_made=invocation.attempt,
                queue=invocation.queue,
                tenant_id=invocation.tenant_id,
            )
        except Exception as exc:
            return await self._requeue(invocation, exc, stage="dead_letter")
        logger.critical(
            "Job moved to dead-letter store",
            extra={
                "job_id": invocation.job_id,
                "job_class": invocation.job_class,
                "tenant_id": invocation.tenant_id,
                "user_id": invocation.user_id,
                "idempotency_key": invocation.idempotency_key,
                "attempt": invocation.attempt,
                "max_attempts": invocation.max_attempts,
                "error": outcome.message,
                "error_type": outcome.exception_class,
            },
        )
        return JobRunResult(JobRunStatus.DEAD_LETTERED, invocation, outcome)

    async def _requeue(
        self,
        invocation: JobInvocation,
        exc: Exception,
        *,
        stage: str,
    ) -> JobRunResult:
        """Put the same attempt back on the queue after escalation failed.

        Errors from the queue itself propagate to the broker task.
        """
        delay = self.settings.escalation_retry_delay_seconds
        logger.error(
            "Job escalation failed, attempt requeued",
            exc_info=exc,
            extra={
                "job_id": invocation.job_id,
                "job_class": invocation.job_class,
                "tenant_id": invocation.tenant_id,
                "attempt": invocation.attempt,
                "stage": stage,
                "retry_in_seconds": delay,
            },
        )
        await self.queue.enqueue(invocation, delay_seconds=delay)
        return JobRunResult(JobRunStatus.REQUEUED, invocation, delay_seconds=delay)


__all__ = ["JobRunResult", "JobRunStatus", "JobRunner"]
