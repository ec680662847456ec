"""Modular Pydantic Settings v2 configuration.

One frozen settings class per domain, each with its own environment
variable prefix:

    OUTBOX_    outbox dispatcher
    JOB_       job runner
    THROTTLE_  per-tenant admission control
    REDIS_     counter store
    DB_        outbox / dead-letter persistence
    RABBIT_    taskiq job broker
    LOG_       logging

Import settings via cached loaders:
    from delivery_service.core.settings import get_outbox_settings
"""

from __future__ import annotations

from .jobs import JobSettings
from .loader import (
    clear_all_caches,
    get_db_settings,
    get_job_settings,
    get_logging_settings,
    get_outbox_settings,
    get_rabbit_settings,
    get_redis_settings,
    get_throttle_settings,
)
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings
from .redis import RedisSettings
from .throttle import ThrottleSettings

__all__ = [
    "JobSettings",
    "LoggingSettings",
    "OutboxSettings",
    "PostgresSettings",
    "RabbitSettings",
    "RedisSettings",
    "ThrottleSettings",
    "clear_all_caches",
    "get_db_settings",
    "get_job_settings",
    "get_logging_settings",
    "get_outbox_settings",
    "get_rabbit_settings",
    "get_redis_settings",
    "get_throttle_settings",
]
