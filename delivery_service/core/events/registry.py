"""Event type registry for payload validation.

The registry maps event type strings to payload schemas, enabling:
- Validation of payloads before they are staged in the outbox
- Typed deserialization of payloads on the consumer side

Usage:
    from delivery_service.core.events import event_registry, DomainEvent

    @event_registry.register
    class ProjectUpdated(DomainEvent):
        event_type: ClassVar[str] = "ProjectUpdated"
        project_id: str

    data = event_registry.validate("ProjectUpdated", {"project_id": "p-1"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import ValidationError

from delivery_service.core.exceptions import PayloadValidationError

if TYPE_CHECKING:
    from delivery_service.core.events.base import DomainEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="DomainEvent")


class EventRegistry:
    """Registry for domain event payload schemas.

    Registration is expected during startup; lookups are read-only afterwards.
    """

    def __init__(self) -> None:
        self._events: dict[str, type[DomainEvent]] = {}

    def register(self, event_class: type[T]) -> type[T]:
        """Register an event class. Usable as a decorator.

        Raises:
            ValueError: If a different class is already registered for
                the same event type.
        """
        event_type = event_class.get_event_type()
        existing = self._events.get(event_type)
        if existing is not None and existing is not event_class:
            raise ValueError(
                f"Event type '{event_type}' already registered with {existing.__name__}"
            )
        self._events[event_type] = event_class
        logger.debug(
            "Registered event type",
            extra={"event_type": event_type, "class": event_class.__name__},
        )
        return event_class

    def get(self, event_type: str) -> type[DomainEvent] | None:
        """Get the payload schema for an event type, if any."""
        return self._events.get(event_type)

    def is_registered(self, event_type: str) -> bool:
        """Check whether an event type has a payload schema."""
        return event_type in self._events

    def validate(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        strict: bool = False,
    ) -> dict[str, Any]:
        """Validate a payload against its registered schema.

        Args:
            event_type: Symbolic event name.
            payload: Raw payload mapping.
            strict: Reject event types without a registered schema.

        Returns:
            The normalized JSON-compatible payload. Unregistered types
            are returned unchanged when not strict.

        Raises:
            PayloadValidationError: If validation fails.
        """
        event_class = self._events.get(event_type)
        if event_class is None:
            if strict:
                raise PayloadValidationError(
                    detail=f"No payload schema registered for event type '{event_type}'",
                    extra={"event_type": event_type},
                )
            return dict(payload)

        try:
            return event_class.model_validate(payload).to_payload()
        except ValidationError as exc:
            raise PayloadValidationError(
                detail=f"Payload for '{event_type}' failed validation",
                extra={"event_type": event_type, "errors": exc.errors(include_url=False)},
            ) from exc

    def parse(self, event_type: str, payload: dict[str, Any]) -> DomainEvent:
        """Deserialize a stored payload into its typed event.

        Raises:
            PayloadValidationError: If the type is unknown or the payload is invalid.
        """
        event_class = self._events.get(event_type)
        if event_class is None:
            raise PayloadValidationError(
                detail=f"Unknown event type '{event_type}'",
                extra={"event_type": event_type},
            )
        try:
            return event_class.model_validate(payload)
        except ValidationError as exc:
            raise PayloadValidationError(
                detail=f"Payload for '{event_type}' failed validation",
                extra={"event_type": event_type, "errors": exc.errors(include_url=False)},
            ) from exc

    def list_event_types(self) -> list[str]:
        """List all registered event types."""
        return sorted(self._events)

    def clear(self) -> None:
        """Remove all registrations (tests only)."""
        self._events.clear()


# Global registry instance
event_registry = EventRegistry()


__all__ = ["EventRegistry", "event_registry"]
