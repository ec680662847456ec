"""Tests for the idempotent, tenant-scoped job runner."""
from __future__ import annotations

from typing import ClassVar

import pytest
from pydantic import BaseModel

from delivery_service.core.exceptions import TenantContextError
from delivery_service.core.settings import JobSettings, ThrottleSettings
from delivery_service.infra.ratelimit import JobThrottle
from delivery_service.infra.tasks.dead_letter import DeadLetterStore
from delivery_service.infra.tasks.jobs import (
    FatalError,
    IdempotencyGuard,
    IdempotentJob,
    JobInvocation,
    JobRunner,
    JobRunStatus,
    JobSucceeded,
    RetryableError,
    TenantScopedJob,
    get_tenant_context,
)
from delivery_service.utils.retry import BackoffPolicy


class NotifyPayload(BaseModel):
    recipient: str


@pytest.fixture
def calls() -> list[dict]:
    return []


@pytest.fixture
def jobs(job_registry, calls):
    """Register a small set of consumer jobs that record their executions."""

    @job_registry.register
    class SendNotification(TenantScopedJob):
        name = "notifications.send"
        queue = "emails"
        payload_model = NotifyPayload

        async def execute(self, context, payload):
            tenant = get_tenant_context()
            calls.append(
                {
                    "job": "send",
                    "tenant": tenant.tenant_id if tenant else None,
                    "recipient": payload.recipient,
                    "attempt": context.attempt,
                },
            )
            return JobSucceeded()

    @job_registry.register
    class FlakyIndexer(TenantScopedJob):
        queue = "search"

        async def execute(self, context, payload):
            calls.append({"job": "flaky", "attempt": context.attempt})
            raise ConnectionError("search cluster unreachable")

    @job_registry.register
    class ReportedFailure(IdempotentJob):
        max_attempts = 2
        backoff: ClassVar[BackoffPolicy] = BackoffPolicy.fixed(5)

        async def execute(self, context, payload):
            calls.append({"job": "reported", "attempt": context.attempt})
            return RetryableError("rate limited by provider")

    @job_registry.register
    class RejectsInput(IdempotentJob):
        async def execute(self, context, payload):
            calls.append({"job": "rejects"})
            return FatalError("account closed")

    @job_registry.register
    class NeedsTenantDeep(IdempotentJob):
        async def execute(self, context, payload):
            calls.append({"job": "deep"})
            raise TenantContextError(detail="tenant lookup failed")

    @job_registry.register
    class ReturnsNothing(IdempotentJob):
        async def execute(self, context, payload):
            calls.append({"job": "nothing"})

    @job_registry.register
    class ReindexSearch(TenantScopedJob):
        queue = "search"

        async def execute(self, context, payload):
            calls.append({"job": "reindex", "job_id": context.job_id})
            return JobSucceeded()

    @job_registry.register
    class MisconfiguredJob(IdempotentJob):
        def __init__(self):
            raise RuntimeError("search client not configured")

        async def execute(self, context, payload):
            return JobSucceeded()

    return {
        cls.job_name(): cls
        for cls in (
            SendNotification,
            FlakyIndexer,
            ReportedFailure,
            RejectsInput,
            NeedsTenantDeep,
            ReturnsNothing,
            ReindexSearch,
            MisconfiguredJob,
        )
    }


@pytest.fixture
def dead_letters(session_factory, clock) -> DeadLetterStore:
    return DeadLetterStore(session_factory, clock=clock)


@pytest.fixture
def runner(job_queue, dead_letters, counter_store, job_registry, clock, jobs) -> JobRunner:
    return JobRunner(
        queue=job_queue,
        dead_letters=dead_letters,
        throttle=JobThrottle(counter_store, ThrottleSettings(per_minute=2), clock),
        idempotency=IdempotencyGuard(counter_store),
        registry=job_registry,
        settings=JobSettings(throttle_reschedule_delay_seconds=60),
        backoff=BackoffPolicy(),
    )


def invocation_for(jobs, name: str, payload: dict | None = None, **kwargs) -> JobInvocation:
    kwargs.setdefault("tenant_id", "acme")
    kwargs.setdefault("user_id", "u-1")
    return jobs[name].build_invocation(payload or {}, **kwargs)


@pytest.mark.unit
class TestSuccessfulRuns:
    """Execution, tenant scoping and duplicate detection."""

    @pytest.mark.asyncio
    async def test_success_runs_inside_tenant_scope(self, runner, jobs, calls):
        """The job sees the invocation's tenant; nothing leaks afterwards."""
        invocation = invocation_for(jobs, "notifications.send", {"recipient": "a@example.com"})

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.SUCCEEDED
        assert calls == [{"job": "send", "tenant": "acme", "recipient": "a@example.com", "attempt": 1}]
        assert get_tenant_context() is None

    @pytest.mark.asyncio
    async def test_duplicate_invocation_is_skipped(self, runner, jobs, calls):
        """A redelivered invocation of completed work does not execute again."""
        invocation = invocation_for(jobs, "notifications.send", {"recipient": "a@example.com"})

        await runner.run(invocation)
        redelivered = invocation.model_copy(update={"job_id": "another-delivery"})
        result = await runner.run(redelivered)

        assert result.status is JobRunStatus.DUPLICATE
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_none_return_counts_as_success(self, runner, jobs):
        """Jobs that return nothing succeeded."""
        result = await runner.run(invocation_for(jobs, "ReturnsNothing"))

        assert result.status is JobRunStatus.SUCCEEDED
        assert isinstance(result.outcome, JobSucceeded)

    @pytest.mark.asyncio
    async def test_run_raw_accepts_broker_dict(self, runner, jobs):
        """Broker tasks pass the invocation as a JSON dict."""
        invocation = invocation_for(jobs, "notifications.send", {"recipient": "b@example.com"})

        result = await runner.run_raw(invocation.model_dump(mode="json"))

        assert result.status is JobRunStatus.SUCCEEDED


@pytest.mark.unit
class TestThrottling:
    """Throttled invocations are rescheduled without consuming attempts."""

    @pytest.mark.asyncio
    async def test_throttled_invocation_rescheduled_unchanged(self, runner, jobs, calls, job_queue, clock):
        """The third dispatch in a minute goes back on the queue as-is."""
        for n in range(2):
            await runner.run(invocation_for(jobs, "notifications.send", {"recipient": f"{n}@example.com"}))

        throttled = invocation_for(jobs, "notifications.send", {"recipient": "late@example.com"})
        result = await runner.run(throttled)

        assert result.status is JobRunStatus.THROTTLED
        assert result.delay_seconds == 60
        assert len(calls) == 2
        assert len(job_queue) == 1
        queued = job_queue.items[0]
        assert queued.invocation == throttled
        assert queued.invocation.attempt == 1
        assert queued.delay_seconds == 60

        clock.advance(seconds=60)
        (due,) = job_queue.pop_due()
        assert (await runner.run(due)).status is JobRunStatus.SUCCEEDED
        assert calls[-1]["attempt"] == 1

    @pytest.mark.asyncio
    async def test_other_tenants_unaffected(self, runner, jobs):
        """One tenant hitting its ceiling does not throttle another."""
        for n in range(3):
            await runner.run(invocation_for(jobs, "notifications.send", {"recipient": f"{n}@example.com"}))

        result = await runner.run(
            invocation_for(jobs, "notifications.send", {"recipient": "x@example.com"}, tenant_id="globex"),
        )

        assert result.status is JobRunStatus.SUCCEEDED


@pytest.mark.unit
class TestRetriesAndDeadLetters:
    """Failure escalation."""

    @pytest.mark.asyncio
    async def test_raising_job_dead_lettered_after_three_attempts(
        self,
        runner,
        jobs,
        calls,
        job_queue,
        dead_letters,
        clock,
    ):
        """A job failing every attempt ends in the dead-letter store with its payload."""
        payload = {"project_id": "p-1", "reason": "reindex"}
        invocation = invocation_for(jobs, "FlakyIndexer", payload)

        first = await runner.run(invocation)
        assert first.status is JobRunStatus.RETRY_SCHEDULED
        assert first.delay_seconds == 60
        assert job_queue.items[0].invocation.attempt == 2

        clock.advance(seconds=60)
        (second_attempt,) = job_queue.pop_due()
        second = await runner.run(second_attempt)
        assert second.status is JobRunStatus.RETRY_SCHEDULED
        assert second.delay_seconds == 120

        clock.advance(seconds=120)
        (third_attempt,) = job_queue.pop_due()
        third = await runner.run(third_attempt)
        assert third.status is JobRunStatus.DEAD_LETTERED
        assert len(job_queue) == 0
        assert [call["attempt"] for call in calls] == [1, 2, 3]

        assert await dead_letters.count() == 1
        entry = await dead_letters.get(invocation.job_id)
        assert entry is not None
        assert entry.job_class == "FlakyIndexer"
        assert entry.payload_data == payload
        assert entry.exception_class == "ConnectionError"
        assert entry.exception_message == "search cluster unreachable"
        assert entry.attempts_made == 3
        assert entry.tenant_id == "acme"
        assert entry.queue == "search"
        assert get_tenant_context() is None

    @pytest.mark.asyncio
    async def test_job_backoff_overrides_runner_policy(self, runner, jobs, dead_letters):
        """A job's own backoff schedule decides the retry delay."""
        invocation = invocation_for(jobs, "ReportedFailure")

        first = await runner.run(invocation)
        final = await runner.run(invocation.next_attempt())

        assert first.status is JobRunStatus.RETRY_SCHEDULED
        assert first.delay_seconds == 5
        assert final.status is JobRunStatus.DEAD_LETTERED
        entry = await dead_letters.get(invocation.job_id)
        assert entry.exception_message == "rate limited by provider"

    @pytest.mark.asyncio
    async def test_fatal_error_skips_retries(self, runner, jobs, calls, job_queue, dead_letters):
        """FatalError dead-letters on the first attempt."""
        result = await runner.run(invocation_for(jobs, "RejectsInput"))

        assert result.status is JobRunStatus.DEAD_LETTERED
        assert len(calls) == 1
        assert len(job_queue) == 0
        assert await dead_letters.count(tenant_id="acme") == 1

    @pytest.mark.asyncio
    async def test_context_error_from_execute_is_fatal(self, runner, jobs, dead_letters):
        """Tenant context errors are never retried."""
        invocation = invocation_for(jobs, "NeedsTenantDeep")

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.DEAD_LETTERED
        entry = await dead_letters.get(invocation.job_id)
        assert entry.exception_class == "TenantContextError"


@pytest.mark.unit
class TestRejectedInvocations:
    """Invocations that can never succeed are dead-lettered before execution."""

    @pytest.mark.asyncio
    async def test_missing_tenant(self, runner, jobs, calls, dead_letters):
        """Tenant-scoped jobs without a tenant fail fast."""
        invocation = invocation_for(jobs, "notifications.send", {"recipient": "a@example.com"}, tenant_id=None)

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.DEAD_LETTERED
        assert calls == []
        entry = await dead_letters.get(invocation.job_id)
        assert entry.exception_class == "TenantContextError"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, runner, jobs, calls, dead_letters):
        """Payloads failing the job's schema are dead-lettered untouched."""
        invocation = invocation_for(jobs, "notifications.send", {"to": "a@example.com"})

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.DEAD_LETTERED
        assert calls == []
        entry = await dead_letters.get(invocation.job_id)
        assert entry.exception_class == "PayloadValidationError"
        assert entry.payload_data == {"to": "a@example.com"}

    @pytest.mark.asyncio
    async def test_unknown_job(self, runner, dead_letters):
        """Invocations naming no registered job are dead-lettered."""
        invocation = JobInvocation(job_class="Vanished", idempotency_key="k", tenant_id="acme")

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.DEAD_LETTERED
        entry = await dead_letters.get(invocation.job_id)
        assert entry.exception_class == "UnknownJobError"


@pytest.mark.unit
class TestEventFanOut:
    """Jobs produced from distinct outbox events."""

    @pytest.mark.asyncio
    async def test_events_with_equal_payloads_both_execute(self, runner, jobs, calls, job_queue, clock):
        """A second change carrying the same payload is not mistaken for a redelivery."""
        from delivery_service.infra.events.outbox import JobPublisher, OutboxEvent

        publisher = JobPublisher(job_queue, settings=JobSettings())
        publisher.route("ProjectUpdated", jobs["ReindexSearch"])
        payload = {"project_id": "p-1", "changed_fields": ["name"]}

        statuses = []
        for event_id in (1, 2):
            event = OutboxEvent(
                id=event_id,
                aggregate_type="project",
                aggregate_id="p-1",
                event_type="ProjectUpdated",
                payload=payload,
                tenant_id="acme",
                user_id="u-1",
            )
            await publisher.publish(event)
            (invocation,) = job_queue.pop_due()
            statuses.append((await runner.run(invocation)).status)
            clock.advance(hours=1)

        assert statuses == [JobRunStatus.SUCCEEDED, JobRunStatus.SUCCEEDED]
        assert [call["job_id"] for call in calls] == ["outbox-1-reindex_search", "outbox-2-reindex_search"]

        # Redelivering the first event is still recognised
        await publisher.publish(event)
        (redelivered,) = job_queue.pop_due()
        assert (await runner.run(redelivered)).status is JobRunStatus.DUPLICATE


class UnavailableDeadLetters:
    """Dead-letter store whose database is down."""

    def __init__(self) -> None:
        self.attempts = 0

    async def move(self, *args, **kwargs):
        self.attempts += 1
        raise ConnectionError("db down")


class FailingQueue:
    """Job queue that refuses the first ``failures`` enqueues."""

    def __init__(self, inner, failures: int) -> None:
        self.inner = inner
        self.failures = failures

    async def enqueue(self, invocation, *, delay_seconds: float = 0) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("broker unreachable")
        await self.inner.enqueue(invocation, delay_seconds=delay_seconds)


@pytest.mark.unit
class TestEscalationFailures:
    """Work is never dropped when retrying or dead-lettering fails."""

    @pytest.fixture
    def make_runner(self, job_queue, dead_letters, job_registry, jobs):
        def build(*, queue=None, dead_letter_store=None) -> JobRunner:
            return JobRunner(
                queue=queue or job_queue,
                dead_letters=dead_letter_store or dead_letters,
                registry=job_registry,
                settings=JobSettings(escalation_retry_delay_seconds=30),
                backoff=BackoffPolicy(),
            )

        return build

    @pytest.mark.asyncio
    async def test_final_failure_requeued_when_dead_letter_store_down(self, make_runner, jobs, job_queue):
        """The last attempt goes back on the queue unchanged instead of vanishing."""
        store = UnavailableDeadLetters()
        runner = make_runner(dead_letter_store=store)
        invocation = invocation_for(jobs, "ReportedFailure", max_attempts=1)

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.REQUEUED
        assert result.delay_seconds == 30
        assert store.attempts == 1
        (queued,) = job_queue.items
        assert queued.invocation == invocation
        assert queued.delay_seconds == 30

    @pytest.mark.asyncio
    async def test_rejected_invocation_requeued_when_dead_letter_store_down(self, make_runner, jobs, job_queue):
        """Invocations rejected before execution are also kept."""
        runner = make_runner(dead_letter_store=UnavailableDeadLetters())
        invocation = invocation_for(jobs, "notifications.send", {"recipient": "a@example.com"}, tenant_id=None)

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.REQUEUED
        assert job_queue.items[0].invocation == invocation

    @pytest.mark.asyncio
    async def test_retry_enqueue_failure_requeues_same_attempt(self, make_runner, jobs, job_queue):
        """If the next attempt cannot be queued, the current one is retried later."""
        runner = make_runner(queue=FailingQueue(job_queue, failures=1))
        invocation = invocation_for(jobs, "FlakyIndexer")

        result = await runner.run(invocation)

        assert result.status is JobRunStatus.REQUEUED
        (queued,) = job_queue.items
        assert queued.invocation.attempt == 1
        assert queued.delay_seconds == 30

    @pytest.mark.asyncio
    async def test_unreachable_queue_raises_for_broker_retry(self, make_runner, jobs):
        """When nothing can be queued the error reaches the broker task."""
        runner = make_runner(queue=FailingQueue(None, failures=2))

        with pytest.raises(ConnectionError, match="broker unreachable"):
            await runner.run(invocation_for(jobs, "FlakyIndexer"))

        assert get_tenant_context() is None

    @pytest.mark.asyncio
    async def test_constructor_error_is_a_retryable_outcome(self, make_runner, jobs, job_queue):
        """A job that cannot be instantiated fails like any raising job."""
        runner = make_runner()

        result = await runner.run(invocation_for(jobs, "MisconfiguredJob"))

        assert result.status is JobRunStatus.RETRY_SCHEDULED
        assert result.outcome == RetryableError(
            message="search client not configured",
            exception_class="RuntimeError",
        )
        assert job_queue.items[0].invocation.attempt == 2
