"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from delivery_service.core.settings.loader import get_outbox_settings

    settings = get_outbox_settings()  # First call: loads and validates
    settings = get_outbox_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    get_outbox_settings.cache_clear()

    Or construct settings directly:
    settings = OutboxSettings(max_attempts=5)
"""

from __future__ import annotations

from functools import lru_cache

from .jobs import JobSettings
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings
from .redis import RedisSettings
from .throttle import ThrottleSettings


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings."""
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings."""
    return RedisSettings()


@lru_cache(maxsize=1)
def get_rabbit_settings() -> RabbitSettings:
    """Get cached RabbitMQ settings."""
    return RabbitSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_outbox_settings() -> OutboxSettings:
    """Get cached outbox dispatcher settings."""
    return OutboxSettings()


@lru_cache(maxsize=1)
def get_job_settings() -> JobSettings:
    """Get cached job runner settings."""
    return JobSettings()


@lru_cache(maxsize=1)
def get_throttle_settings() -> ThrottleSettings:
    """Get cached throttle settings."""
    return ThrottleSettings()


def clear_all_caches() -> None:
    """Clear all settings caches (tests and hot reload)."""
    get_db_settings.cache_clear()
    get_redis_settings.cache_clear()
    get_rabbit_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_outbox_settings.cache_clear()
    get_job_settings.cache_clear()
    get_throttle_settings.cache_clear()
