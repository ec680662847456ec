"""Database infrastructure (engine and sessions)."""

from delivery_service.infra.database.session import (
    build_engine,
    build_session_factory,
    close_database,
    get_async_session,
    get_engine,
    get_session_factory,
    init_database,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "close_database",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
