"""Idempotent job base classes, invocations and typed outcomes.

Jobs report how they ended by returning an outcome instead of raising:

    JobSucceeded    done; the idempotency key is marked completed
    RetryableError  try again after backoff, dead-letter when attempts run out
    FatalError      never retry; dead-letter immediately

Example:
    class ReindexPayload(BaseModel):
        project_id: str

    @register_job
    class ReindexProject(TenantScopedJob):
        queue = "search"
        payload_model = ReindexPayload

        async def execute(self, context: JobContext, payload: ReindexPayload) -> JobOutcome:
            if not await search.reindex(context.require_tenant(), payload.project_id):
                return RetryableError("search backend unavailable")
            return JobSucceeded()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from delivery_service.core.exceptions import PayloadValidationError
from delivery_service.infra.tasks.jobs.idempotency import derive_idempotency_key, snake_case

if TYPE_CHECKING:
    from delivery_service.infra.tasks.jobs.context import JobContext
    from delivery_service.utils.retry import BackoffPolicy


@dataclass(frozen=True, slots=True)
class JobSucceeded:
    result: Any = None


@dataclass(frozen=True, slots=True)
class RetryableError:
    message: str
    exception_class: str = "RetryableError"

    @classmethod
    def from_exception(cls, exc: BaseException) -> RetryableError:
        return cls(message=str(exc) or type(exc).__name__, exception_class=type(exc).__name__)


@dataclass(frozen=True, slots=True)
class FatalError:
    message: str
    exception_class: str = "FatalError"

    @classmethod
    def from_exception(cls, exc: BaseException) -> FatalError:
        return cls(message=str(exc) or type(exc).__name__, exception_class=type(exc).__name__)


JobOutcome = JobSucceeded | RetryableError | FatalError


class JobInvocation(BaseModel):
    """Serializable description of one attempt at running a job."""

    job_id: str = Field(default_factory=lambda: uuid4().hex)
    job_class: str = Field(min_length=1)
    queue: str = Field(default="default", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str | None = None
    user_id: str | None = None
    correlation_id: str | None = None
    idempotency_key: str = Field(min_length=1)
    attempt: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_schedule: list[float] = Field(
        default_factory=list,
        description="Delay before attempt n+1, indexed by n-1; empty means use the runner's policy",
    )

    model_config = ConfigDict(frozen=True)

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_attempt(self) -> JobInvocation:
        return self.model_copy(update={"attempt": self.attempt + 1})

    def retry_delay(self, fallback: BackoffPolicy) -> float:
        """Delay before the next attempt after this one fails."""
        index = self.attempt - 1
        if index < len(self.backoff_schedule):
            return self.backoff_schedule[index]
        return fallback.delay(self.attempt)


class IdempotentJob(ABC):
    """Base class for consumer jobs run by ``JobRunner``.

    ``execute`` may run more than once for the same idempotency key (at
    least once delivery), so implementations must tolerate repeats.
    """

    name: ClassVar[str | None] = None
    queue: ClassVar[str | None] = None
    max_attempts: ClassVar[int | None] = None
    backoff: ClassVar[BackoffPolicy | None] = None
    payload_model: ClassVar[type[BaseModel] | None] = None
    requires_tenant: ClassVar[bool] = False

    @classmethod
    def job_name(cls) -> str:
        """Symbolic name used for routing and dead-letter entries."""
        return cls.name or cls.__name__

    @classmethod
    def action_name(cls) -> str:
        return snake_case(cls.__name__)

    @classmethod
    def parse_payload(cls, payload: Mapping[str, Any]) -> Any:
        """Validate the raw payload against ``payload_model``.

        Raises:
            PayloadValidationError: The payload does not match the schema.
        """
        if cls.payload_model is None:
            return dict(payload)
        try:
            return cls.payload_model.model_validate(payload)
        except ValidationError as exc:
            raise PayloadValidationError(
                detail=f"Invalid payload for job '{cls.job_name()}'",
                extra={"job_class": cls.job_name(), "errors": exc.errors(include_url=False)},
            ) from exc

    @classmethod
    def build_invocation(
        cls,
        payload: Mapping[str, Any] | BaseModel,
        *,
        tenant_id: str | None = None,
        user_id: str | None = None,
        correlation_id: str | None = None,
        max_attempts: int | None = None,
        default_max_attempts: int = 3,
        default_queue: str = "default",
    ) -> JobInvocation:
        """Describe the first attempt at running this job for ``payload``.

        Jobs that declare no ``queue`` run on ``default_queue``.
        """
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
        attempts = max_attempts or cls.max_attempts or default_max_attempts
        return JobInvocation(
            job_class=cls.job_name(),
            queue=cls.queue or default_queue,
            payload=data,
            tenant_id=tenant_id,
            user_id=user_id,
            correlation_id=correlation_id,
            idempotency_key=derive_idempotency_key(tenant_id, user_id, cls.action_name(), data),
            max_attempts=attempts,
            backoff_schedule=cls.backoff.schedule(attempts) if cls.backoff else [],
        )

    @abstractmethod
    async def execute(self, context: JobContext, payload: Any) -> JobOutcome:
        """Run the unit of work once."""


class TenantScopedJob(IdempotentJob):
    """Job that must run on behalf of a tenant.

    Invocations without a tenant are rejected before ``execute`` and
    dead-lettered as a context error.
    """

    requires_tenant: ClassVar[bool] = True


__all__ = [
    "FatalError",
    "IdempotentJob",
    "JobInvocation",
    "JobOutcome",
    "JobSucceeded",
    "RetryableError",
    "TenantScopedJob",
]
