"""Idempotent, tenant-scoped job framework.

Usage:
    from delivery_service.infra.tasks.jobs import (
        JobContext,
        JobSucceeded,
        RetryableError,
        TenantScopedJob,
        register_job,
    )
"""

from delivery_service.infra.tasks.jobs.base import (
    FatalError,
    IdempotentJob,
    JobInvocation,
    JobOutcome,
    JobSucceeded,
    RetryableError,
    TenantScopedJob,
)
from delivery_service.infra.tasks.jobs.context import (
    JobContext,
    get_tenant_context,
    require_tenant,
    tenant_scope,
)
from delivery_service.infra.tasks.jobs.idempotency import (
    IdempotencyGuard,
    derive_idempotency_key,
    payload_hash,
    snake_case,
)
from delivery_service.infra.tasks.jobs.queue import InMemoryJobQueue, JobQueue, TaskiqJobQueue
from delivery_service.infra.tasks.jobs.registry import JobRegistry, job_registry, register_job
from delivery_service.infra.tasks.jobs.runner import JobRunner, JobRunResult, JobRunStatus

__all__ = [
    "FatalError",
    "IdempotencyGuard",
    "IdempotentJob",
    "InMemoryJobQueue",
    "JobContext",
    "JobInvocation",
    "JobOutcome",
    "JobQueue",
    "JobRegistry",
    "JobRunResult",
    "JobRunStatus",
    "JobRunner",
    "JobSucceeded",
    "RetryableError",
    "TaskiqJobQueue",
    "TenantScopedJob",
    "derive_idempotency_key",
    "get_tenant_context",
    "job_registry",
    "payload_hash",
    "register_job",
    "require_tenant",
    "snake_case",
    "tenant_scope",
]
