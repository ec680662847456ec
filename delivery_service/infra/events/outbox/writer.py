"""Outbox writer, called inside the business transaction.

Usage:
    async with session.begin():
        project.name = "Renamed"
        await OutboxWriter(session).add(
            "project",
            str(project.id),
            "ProjectUpdated",
            {"project_id": str(project.id), "changed_fields": ["name"]},
            EventMetadata(tenant_id="acme", user_id="u-1"),
        )
    # Both the rename and the event commit together, or neither does
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from delivery_service.core.events import EventRegistry, event_registry
from delivery_service.core.exceptions import OutboxWriteError, PayloadValidationError
from delivery_service.core.schemas.tenant import EventMetadata
from delivery_service.core.settings import OutboxSettings, get_outbox_settings
from delivery_service.infra.events.outbox.models import OutboxEvent, OutboxStatus
from delivery_service.infra.events.outbox.repository import OutboxRepository
from delivery_service.infra.metrics.prometheus import outbox_events_written_total
from delivery_service.utils.retry import Clock, system_clock

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from delivery_service.core.events import DomainEvent

logger = logging.getLogger(__name__)


class OutboxWriter:
    """Stages outbox rows in the caller's session.

    The writer flushes but never commits. A failed insert raises
    ``OutboxWriteError`` out of the business transaction so it rolls back
    as a whole: there is no committed change without its event.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: OutboxSettings | None = None,
        registry: EventRegistry = event_registry,
        repository: OutboxRepository | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.session = session
        self.settings = settings or get_outbox_settings()
        self.registry = registry
        self.repository = repository or OutboxRepository()
        self._clock = clock

    async def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: Mapping[str, Any],
        metadata: EventMetadata | dict[str, Any] | None = None,
        *,
        max_attempts: int | None = None,
        event_version: int = 1,
    ) -> OutboxEvent:
        """Append a pending event to the current transaction.

        Raises:
            PayloadValidationError: Payload does not match its registered schema.
            OutboxWriteError: The row could not be staged.
        """
        if not isinstance(payload, Mapping):
            raise PayloadValidationError(
                detail=f"Payload for '{event_type}' must be a mapping",
                extra={"event_type": event_type, "received": type(payload).__name__},
            )
        data = self.registry.validate(
            event_type,
            dict(payload),
            strict=self.settings.strict_payloads,
        )
        meta = EventMetadata.coerce(metadata)
        now = self._clock()

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=str(aggregate_id),
            event_type=event_type,
            event_version=event_version,
            payload=data,
            tenant_id=meta.tenant_id,
            user_id=meta.user_id,
            correlation_id=meta.correlation_id,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts or self.settings.max_attempts,
            created_at=now,
            updated_at=now,
        )

        try:
            await self.repository.add(self.session, event)
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to stage outbox event",
                extra={
                    "event_type": event_type,
                    "aggregate_type": aggregate_type,
                    "aggregate_id": aggregate_id,
                    "error": str(exc),
                },
            )
            raise OutboxWriteError(
                detail=f"Could not write outbox event '{event_type}'",
                extra={"event_type": event_type, "aggregate_id": aggregate_id},
            ) from exc

        outbox_events_written_total.labels(event_type=event_type).inc()
        logger.debug(
            "Outbox event staged",
            extra={
                "event_id": event.id,
                "event_type": event_type,
                "aggregate_type": aggregate_type,
                "aggregate_id": aggregate_id,
                "tenant_id": meta.tenant_id,
            },
        )
        return event

    async def add_event(
        self,
        event: DomainEvent,
        aggregate_id: str,
        metadata: EventMetadata | dict[str, Any] | None = None,
        *,
        aggregate_type: str | None = None,
        max_attempts: int | None = None,
    ) -> OutboxEvent:
        """Stage a typed domain event.

        ``aggregate_type`` defaults to the event class's declared aggregate.
        """
        resolved_type = aggregate_type or event.aggregate_type
        if not resolved_type:
            raise PayloadValidationError(
                detail=f"{type(event).__name__} has no aggregate_type",
                extra={"event_type": event.get_event_type()},
            )
        return await self.add(
            resolved_type,
            aggregate_id,
            event.get_event_type(),
            event.to_payload(),
            metadata,
            max_attempts=max_attempts,
            event_version=event.event_version,
        )


__all__ = ["OutboxWriter"]
