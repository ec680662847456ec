"""Transactional outbox: writer, store and dispatcher.

Usage:
    from delivery_service.infra.events.outbox import OutboxWriter

    async with session.begin():
        ...  # business mutation
        await OutboxWriter(session).add("project", project_id, "ProjectUpdated", payload, metadata)
"""

from delivery_service.infra.events.outbox.dispatcher import OutboxDispatcher
from delivery_service.infra.events.outbox.models import OutboxEvent, OutboxStatus
from delivery_service.infra.events.outbox.publisher import JobPublisher, Publisher
from delivery_service.infra.events.outbox.repository import OutboxRepository
from delivery_service.infra.events.outbox.writer import OutboxWriter

__all__ = [
    "JobPublisher",
    "OutboxDispatcher",
    "OutboxEvent",
    "OutboxRepository",
    "OutboxStatus",
    "OutboxWriter",
    "Publisher",
]
