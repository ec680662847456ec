"""Context management for structured logging.

Provides automatic context injection into log records using contextvars,
so tenant, user and job identifiers appear on every record emitted while
a unit of work runs, without threading them through each logging call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Each async task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        set_log_context(tenant_id="t-1", job_class="reindex_project")
        logger.info("Executing")  # Includes tenant_id and job_class
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current task."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of a block, restoring the previous context after."""
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that copies the contextvars log context onto records.

    Existing record attributes (including ``extra=`` fields) win over
    context values.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


__all__ = [
    "ContextInjectingFilter",
    "clear_log_context",
    "get_log_context",
    "log_context",
    "set_log_context",
]
