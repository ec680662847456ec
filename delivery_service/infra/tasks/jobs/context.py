"""Explicit job context and scoped tenant propagation.

``JobContext`` is passed by value into every ``execute`` call. For code
further down the stack that cannot take it as a parameter, ``tenant_scope``
also publishes the tenant in a context variable for exactly the duration of
the job and restores the previous value on every exit path, so a tenant
never leaks into the next job run by the same worker.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING

from delivery_service.core.exceptions import TenantContextError
from delivery_service.core.schemas.tenant import TenantContext
from delivery_service.infra.logging.context import log_context

if TYPE_CHECKING:
    from delivery_service.infra.tasks.jobs.base import JobInvocation

_tenant_context: ContextVar[TenantContext | None] = ContextVar(
    "tenant_context",
    default=None,
)


def get_tenant_context() -> TenantContext | None:
    """Get current tenant context, if a tenant-scoped unit of work is running."""
    return _tenant_context.get()


def require_tenant() -> TenantContext:
    """Get current tenant context, raising if not available.

    Raises:
        TenantContextError: If no tenant context is available
    """
    context = _tenant_context.get()
    if context is None:
        raise TenantContextError(detail="No tenant context available")
    return context


@dataclass(frozen=True, slots=True)
class JobContext:
    """Everything a job knows about the invocation it is running."""

    job_id: str
    job_class: str
    queue: str
    attempt: int
    max_attempts: int
    idempotency_key: str
    tenant_id: str | None = None
    user_id: str | None = None
    correlation_id: str | None = None

    @classmethod
    def from_invocation(cls, invocation: JobInvocation) -> JobContext:
        return cls(
            job_id=invocation.job_id,
            job_class=invocation.job_class,
            queue=invocation.queue,
            attempt=invocation.attempt,
            max_attempts=invocation.max_attempts,
            idempotency_key=invocation.idempotency_key,
            tenant_id=invocation.tenant_id,
            user_id=invocation.user_id,
            correlation_id=invocation.correlation_id,
        )

    @property
    def tenant(self) -> TenantContext | None:
        if self.tenant_id is None:
            return None
        return TenantContext(tenant_id=self.tenant_id, user_id=self.user_id, identified_by="job")

    def require_tenant(self) -> str:
        """Tenant id of this job.

        Raises:
            TenantContextError: The invocation carries no tenant.
        """
        if not self.tenant_id:
            raise TenantContextError(
                detail=f"Job '{self.job_class}' requires a tenant",
                extra={"job_id": self.job_id, "job_class": self.job_class},
            )
        return self.tenant_id

    def log_fields(self) -> dict[str, object]:
        return {
            "job_id": self.job_id,
            "job_class": self.job_class,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "idempotency_key": self.idempotency_key,
            "attempt": self.attempt,
            "correlation_id": self.correlation_id,
        }


@contextmanager
def tenant_scope(context: JobContext) -> Iterator[JobContext]:
    """Publish the job's tenant and log fields for the duration of a block."""
    token = _tenant_context.set(context.tenant)
    try:
        with log_context(**context.log_fields()):
            yield context
    finally:
        _tenant_context.reset(token)


__all__ = [
    "JobContext",
    "get_tenant_context",
    "require_tenant",
    "tenant_scope",
]
