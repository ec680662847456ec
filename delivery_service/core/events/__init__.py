"""Schema'd domain event payloads.

Usage:
    from delivery_service.core.events import DomainEvent, event_registry
"""

from delivery_service.core.events.base import DomainEvent
from delivery_service.core.events.registry import EventRegistry, event_registry

__all__ = ["DomainEvent", "EventRegistry", "event_registry"]
