"""DeadLetterEntry SQLAlchemy model.

One row per job that exhausted its attempts or failed fatally. Rows are
never retried automatically; replay and discard are operator actions.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from delivery_service.core.database.base import Base, IntegerPKMixin, utcnow


class DeadLetterEntry(Base, IntegerPKMixin):
    """Permanently failed job, kept for manual remediation.

    Attributes:
        job_id: Job identifier, unique; repeated escalations update the row
        job_class: Symbolic job name
        queue: Queue the job ran on
        payload: Original job arguments as JSON text, stored verbatim
        exception_class / exception_message: Last failure
        attempts_made: Attempts consumed when the job was escalated
        escalation_count: How many times this job reached the dead-letter store
        tenant_id: Owning tenant, when known
        moved_at: Last escalation time
    """

    __tablename__ = "dead_letter_entries"

    job_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Job identifier",
    )
    job_class: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Symbolic job name",
    )
    queue: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Queue the job ran on",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Original job arguments (JSON, verbatim)",
    )
    exception_class: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
        comment="Exception or outcome type of the last failure",
    )
    exception_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last failure message",
    )
    attempts_made: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Attempts consumed",
    )
    escalation_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Times this job was dead-lettered",
    )
    tenant_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Owning tenant",
    )
    moved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Last escalation time",
    )

    __table_args__ = (
        Index("ix_dead_letter_entries_tenant_moved", "tenant_id", "moved_at"),
        Index("ix_dead_letter_entries_job_class", "job_class"),
    )

    @property
    def payload_data(self) -> Any:
        """Payload decoded for replay."""
        return json.loads(self.payload)

    def __repr__(self) -> str:
        return (
            f"DeadLetterEntry(job_id={self.job_id!r}, job_class={self.job_class!r}, "
            f"attempts_made={self.attempts_made}, escalations={self.escalation_count})"
        )


__all__ = ["DeadLetterEntry"]
