"""Custom exception classes for the delivery core.

Retry decisions for consumer jobs are made from typed outcomes, not from
this hierarchy; these exceptions describe configuration, context and
persistence failures that must surface to the caller.
"""

from __future__ import annotations

from typing import Any


class DeliveryError(Exception):
    """Base delivery exception.

    All custom exceptions should inherit from this class.

    Attributes:
        detail: Human-readable error message.
        type: Error type identifier.
        extra: Additional context-specific information about the error.

    Example:
        raise DeliveryError(
            detail="Outbox row could not be written",
            type="outbox-write-failed",
            extra={"event_type": "ProjectUpdated"}
        )
    """

    default_type = "delivery-error"

    def __init__(
        self,
        detail: str,
        type: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize delivery exception.

        Args:
            detail: Human-readable error message.
            type: Error type identifier.
            extra: Additional context about the error.
        """
        self.detail = detail
        self.type = type or self.default_type
        self.extra = extra or {}
        super().__init__(detail)


class PayloadValidationError(DeliveryError):
    """Raised when an event or job payload does not match its schema.

    Example:
        raise PayloadValidationError(
            detail="Payload for ProjectUpdated is invalid",
            extra={"errors": exc.errors()}
        )
    """

    default_type = "payload-invalid"


class TenantContextError(DeliveryError):
    """Raised when tenant context is required but missing."""

    default_type = "tenant-context-missing"


class UnknownJobError(DeliveryError):
    """Raised when a job class name has no registered implementation."""

    default_type = "unknown-job"


class OutboxWriteError(DeliveryError):
    """Raised when the outbox row could not be staged.

    Propagates out of the business transaction so that it rolls back.
    """

    default_type = "outbox-write-failed"


class ClaimLostError(DeliveryError):
    """Raised when a worker no longer owns the event it is finishing."""

    default_type = "claim-lost"


class CounterStoreError(DeliveryError):
    """Raised when the shared counter store cannot be reached."""

    default_type = "counter-store-unavailable"


__all__ = [
    "ClaimLostError",
    "CounterStoreError",
    "DeliveryError",
    "OutboxWriteError",
    "PayloadValidationError",
    "TenantContextError",
    "UnknownJobError",
]
