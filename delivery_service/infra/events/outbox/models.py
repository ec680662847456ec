"""OutboxEvent SQLAlchemy model for the transactional outbox pattern.

Rows are written in the same transaction as the business mutation they
describe, so either both commit or neither does. The dispatcher is the only
writer afterwards and moves each row through:

    pending -> processing -> published | pending (retry) | failed

Rows are never deleted by the dispatcher; ``cleanup_published`` prunes
old published rows on an operator schedule.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from delivery_service.core.database.base import (
    Base,
    IntegerPKMixin,
    JSONType,
    TimestampMixin,
    as_utc,
)
from delivery_service.core.schemas.tenant import EventMetadata


class OutboxStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PUBLISHED = "published"
    FAILED = "failed"


class OutboxEvent(Base, IntegerPKMixin, TimestampMixin):
    """Durable intent-to-publish record.

    Attributes:
        id: Monotonic primary key, tie-breaker for FIFO ordering
        aggregate_type: Business entity kind (e.g. "Project")
        aggregate_id: Business entity identifier
        event_type: Symbolic event name (e.g. "ProjectUpdated")
        event_version: Payload schema version
        payload: Change description; immutable once written
        tenant_id / user_id / correlation_id: Event metadata; immutable
        status: pending, processing, published or failed
        attempts: Failed publish attempts so far
        max_attempts: Attempt limit for this event
        next_retry_at: Earliest time the event may be claimed again
        claimed_by / claimed_at: Current owner while processing
        published_at: When the publisher accepted the event
        error_message: Last publish error
    """

    __tablename__ = "outbox_events"

    # Aggregate identification
    aggregate_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Aggregate type (e.g., Project, Task)",
    )
    aggregate_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Aggregate identifier",
    )

    # Event
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Event type identifier",
    )
    event_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Event schema version",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Event data",
    )

    # Metadata
    tenant_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Owning tenant",
    )
    user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="User who caused the change",
    )
    correlation_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Distributed tracing correlation ID",
    )

    # Delivery state
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=OutboxStatus.PENDING.value,
        comment="pending, processing, published or failed",
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Failed publish attempts",
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
        comment="Attempt limit before terminal failure",
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Earliest time the event may be claimed",
    )
    claimed_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Worker currently processing the event",
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the current claim was taken",
    )
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the event was successfully published",
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last error message if publishing failed",
    )

    __table_args__ = (
        # Claim query: status + due time, FIFO
        Index(
            "ix_outbox_events_claimable",
            "status",
            "next_retry_at",
            "created_at",
        ),
        # Stuck-claim reconciliation
        Index(
            "ix_outbox_events_processing",
            "status",
            "claimed_at",
        ),
        Index(
            "ix_outbox_events_aggregate",
            "aggregate_type",
            "aggregate_id",
            "created_at",
        ),
    )

    @property
    def event_metadata(self) -> EventMetadata:
        return EventMetadata(
            tenant_id=self.tenant_id,
            user_id=self.user_id,
            correlation_id=self.correlation_id,
        )

    @property
    def is_terminal(self) -> bool:
        """Published, or failed with no attempts left."""
        if self.status == OutboxStatus.PUBLISHED:
            return True
        return self.status == OutboxStatus.FAILED and self.attempts >= self.max_attempts

    def is_due(self, now: datetime) -> bool:
        retry_at = as_utc(self.next_retry_at)
        return retry_at is None or retry_at <= now

    def __repr__(self) -> str:
        return (
            f"OutboxEvent("
            f"id={self.id}, "
            f"event_type={self.event_type!r}, "
            f"status={self.status}, "
            f"attempts={self.attempts}/{self.max_attempts}"
            f")"
        )


__all__ = ["OutboxEvent", "OutboxStatus"]
