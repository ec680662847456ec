"""Tenant and event-metadata schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from delivery_service.core.exceptions import PayloadValidationError


class TenantContext(BaseModel):
    """Tenant/user pair restored for the duration of a unit of work.

    Propagated through ``tenant_scope`` into a context variable so code
    below the job runner can read the current tenant.
    """

    tenant_id: str = Field(description="Tenant identifier")
    user_id: str | None = Field(default=None, description="Acting user, if any")
    identified_by: str | None = Field(
        default=None,
        description="Where the context came from (job, event, request)",
    )

    model_config = ConfigDict(frozen=True)


class EventMetadata(BaseModel):
    """Tracing and isolation metadata carried on every outbox event.

    Immutable once written; the dispatcher passes it through to publishers
    untouched.
    """

    tenant_id: str | None = Field(default=None, description="Owning tenant")
    user_id: str | None = Field(default=None, description="User who caused the change")
    correlation_id: str | None = Field(
        default=None,
        max_length=64,
        description="Distributed tracing correlation ID",
    )

    # Integer user and tenant ids are common upstream
    model_config = ConfigDict(frozen=True, extra="forbid", coerce_numbers_to_str=True)

    @classmethod
    def coerce(cls, value: EventMetadata | dict[str, Any] | None) -> EventMetadata:
        """Accept a model, a plain mapping, or nothing.

        Raises:
            PayloadValidationError: The mapping is not valid metadata.
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        try:
            return cls.model_validate(value)
        except ValidationError as exc:
            raise PayloadValidationError(
                detail="Invalid event metadata",
                extra={"errors": exc.errors(include_url=False)},
            ) from exc


__all__ = ["EventMetadata", "TenantContext"]
