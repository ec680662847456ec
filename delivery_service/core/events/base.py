"""Domain event payload schemas.

Each event type written to the outbox may declare a payload schema by
subclassing ``DomainEvent``. The schema is the tagged-union member for
its ``event_type``: the writer validates payloads against it before the
row is staged, so malformed payloads never reach a consumer.

Example:
    class ProjectUpdated(DomainEvent):
        event_type: ClassVar[str] = "ProjectUpdated"
        aggregate_type: ClassVar[str] = "project"

        project_id: str
        changed_fields: list[str]
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict


class DomainEvent(BaseModel):
    """Base class for schema'd event payloads.

    Subclasses must define:
    - event_type: ClassVar[str] - symbolic event name (e.g., "ProjectUpdated")

    Optionally:
    - aggregate_type: ClassVar[str] - default aggregate type for the writer
    - event_version: ClassVar[int] - schema version (default: 1)
    """

    event_type: ClassVar[str] = ""
    aggregate_type: ClassVar[str | None] = None
    event_version: ClassVar[int] = 1

    model_config = ConfigDict(
        frozen=True,  # Payloads are immutable once written
        str_strip_whitespace=True,
        extra="forbid",  # Strict schema validation
    )

    @classmethod
    def get_event_type(cls) -> str:
        """Return the event type identifier.

        Raises:
            ValueError: If the subclass did not set event_type.
        """
        if not cls.event_type:
            raise ValueError(f"{cls.__name__} must define event_type")
        return cls.event_type

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible payload stored on the outbox row."""
        return self.model_dump(mode="json")


__all__ = ["DomainEvent"]
