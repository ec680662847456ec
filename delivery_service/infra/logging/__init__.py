"""Logging infrastructure.

Structured logging with:
- JSONL format for log aggregation
- Automatic context injection (tenant_id, user_id, job_class, ...)
- QueueHandler + QueueListener for non-blocking I/O
- OpenTelemetry trace correlation

Basic usage:
    from delivery_service.infra.logging import set_log_context
    import logging

    logger = logging.getLogger(__name__)

    set_log_context(tenant_id="acme")
    logger.info("Dispatching")  # Automatically includes tenant_id
"""

from delivery_service.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from delivery_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from delivery_service.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_log_context",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
