"""Logging configuration setup.

Provides production-ready logging configuration using:
- dictConfig for root level and filters
- QueueHandler + QueueListener for non-blocking I/O
- ContextInjectingFilter for automatic tenant/job context propagation
- JSONL format for machine parsing
"""

from __future__ import annotations

import atexit
import logging
import logging.config
import time
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from delivery_service.core.settings.logs import LoggingSettings

# Global queue and listener for async logging
_log_queue: Queue[logging.LogRecord] | None = None
_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None
_LOGGING_INITIALIZED = False

logger = logging.getLogger(__name__)

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def complete(max_wait: float = 5.0) -> None:
    """Wait for all queued log records to be processed.

    Call before process exit or after a sweep to make sure records are written.
    """
    if _log_queue is None or _listener is None:
        return

    start = time.time()
    while not _log_queue.empty() and (time.time() - start) < max_wait:
        time.sleep(0.01)


def shutdown() -> None:
    """Stop the QueueListener and detach the queue handler.

    Registered with atexit on first configuration.
    """
    global _log_queue, _listener, _queue_handler, _LOGGING_INITIALIZED

    if _listener is not None:
        complete()
        _listener.stop()
        _listener = None

    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None

    _log_queue = None
    _LOGGING_INITIALIZED = False


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    settings_obj = log_settings
    if settings_obj is None:
        from delivery_service.core.settings import get_logging_settings

        settings_obj = get_logging_settings()

    log_config = {**settings_obj.to_logging_kwargs(), **configure_kwargs}
    configure_logging(**log_config)
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    *,
    service_name: str = "delivery-service",
    json_logs: bool = True,
    console_enabled: bool = True,
    file_path: str | Path | None = None,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    include_context: bool = True,
    capture_warnings: bool = True,
) -> None:
    """Configure logging with dictConfig and the QueueHandler pattern.

    All handlers hang off a QueueListener; the root logger only gets a
    QueueHandler, so application loggers never block on I/O.

    Example:
        from delivery_service.core.settings import get_logging_settings
        configure_logging(**get_logging_settings().to_logging_kwargs())
    """
    global _log_queue, _listener, _queue_handler

    if _listener is not None:
        shutdown()

    if capture_warnings:
        logging.captureWarnings(True)

    filters: dict[str, Any] = {}
    if include_context:
        filters["context"] = {
            "()": "delivery_service.infra.logging.context.ContextInjectingFilter",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": filters,
            "root": {
                "level": log_level.upper(),
                "handlers": [],
                "filters": list(filters),
            },
        },
    )

    handlers = _build_handlers(
        service_name=service_name,
        json_logs=json_logs,
        console_enabled=console_enabled,
        file_path=Path(file_path) if file_path else None,
        file_max_bytes=file_max_bytes,
        file_backup_count=file_backup_count,
    )

    _log_queue = Queue()
    if handlers:
        _listener = QueueListener(_log_queue, *handlers, respect_handler_level=True)
        _listener.start()
        atexit.register(shutdown)

    _queue_handler = QueueHandler(_log_queue)
    if include_context:
        # Context must be captured on the producing task, not the listener thread
        from delivery_service.infra.logging.context import ContextInjectingFilter

        _queue_handler.addFilter(ContextInjectingFilter())
    logging.getLogger().addHandler(_queue_handler)


def _build_handlers(
    *,
    service_name: str,
    json_logs: bool,
    console_enabled: bool,
    file_path: Path | None,
    file_max_bytes: int,
    file_backup_count: int,
) -> list[logging.Handler]:
    from delivery_service.infra.logging.formatters import JSONFormatter

    def _formatter() -> logging.Formatter:
        if json_logs:
            return JSONFormatter(static={"service": service_name})
        return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = []

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(_formatter())
        handlers.append(console_handler)

    if file_path:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=file_max_bytes,
            backupCount=file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_formatter())
        handlers.append(file_handler)

    return handlers


__all__ = ["complete", "configure_logging", "setup_logging", "shutdown"]
