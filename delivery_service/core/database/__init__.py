"""Database primitives shared by the outbox and dead-letter stores."""

from delivery_service.core.database.base import (
    Base,
    IntegerPKMixin,
    JSONType,
    TimestampMixin,
    as_utc,
    utcnow,
)

__all__ = [
    "Base",
    "IntegerPKMixin",
    "JSONType",
    "TimestampMixin",
    "as_utc",
    "utcnow",
]
