"""Dead-letter store for terminally failed jobs."""

from delivery_service.infra.tasks.dead_letter.models import DeadLetterEntry
from delivery_service.infra.tasks.dead_letter.repository import DeadLetterRepository
from delivery_service.infra.tasks.dead_letter.store import DeadLetterStore, serialize_payload

__all__ = ["DeadLetterEntry", "DeadLetterRepository", "DeadLetterStore", "serialize_payload"]
