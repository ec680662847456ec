"""Declarative base and shared column mixins.

Models mix in only what they need:

    class OutboxEvent(Base, IntegerPKMixin, TimestampMixin):
        __tablename__ = "outbox_events"

Timestamps are stored timezone-aware (UTC). SQLite hands them back naive,
so code comparing persisted timestamps goes through ``as_utc``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, BigInteger, DateTime, Integer, MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

# Consistent naming convention for database constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# BIGINT identity on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Declarative base with automatic table naming.

    The automatic table naming can be overridden by setting __tablename__
    explicitly on the model class.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class IntegerPKMixin:
    """Auto-incrementing primary key.

    Monotonically assigned, which keeps ``id`` usable as a tie-breaker
    when ordering rows created within the same timestamp.
    """

    __allow_unmapped__ = True

    id: Mapped[int] = mapped_column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing primary key",
    )


class TimestampMixin:
    """Timestamp tracking for create and update operations.

    Uses both Python-side defaults (for test environments) and database
    server defaults (for direct SQL inserts).
    """

    __allow_unmapped__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        comment="Timestamp of record creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp of last update",
    )


__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BigIntPK",
    "IntegerPKMixin",
    "JSONType",
    "TimestampMixin",
    "as_utc",
    "utcnow",
]
