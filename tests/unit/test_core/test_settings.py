"""Tests for the modular settings classes and their cached loaders."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from delivery_service.core.settings import (
    JobSettings,
    OutboxSettings,
    PostgresSettings,
    RabbitSettings,
    RedisSettings,
    ThrottleSettings,
    get_job_settings,
    get_outbox_settings,
    get_throttle_settings,
)


@pytest.mark.unit
class TestOutboxSettings:
    """Outbox dispatcher configuration."""

    def test_defaults(self):
        """Defaults match the documented retry policy."""
        settings = OutboxSettings()

        assert settings.batch_size == 100
        assert settings.max_attempts == 3
        assert settings.backoff_base_seconds == 60
        assert settings.visibility_timeout_seconds == 300
        assert settings.retry_batch_size == 50
        assert settings.worker_id

    def test_retry_batch_size_never_zero(self):
        """A tiny batch still retries at least one event."""
        assert OutboxSettings(batch_size=1).retry_batch_size == 1

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        """OUTBOX_ variables override defaults through the cached loader."""
        monkeypatch.setenv("OUTBOX_BATCH_SIZE", "10")
        monkeypatch.setenv("OUTBOX_WORKER_ID", "worker-a")
        get_outbox_settings.cache_clear()

        settings = get_outbox_settings()

        assert settings.batch_size == 10
        assert settings.worker_id == "worker-a"
        assert get_outbox_settings() is settings

    def test_invalid_values_rejected(self):
        """Out-of-range values fail validation."""
        with pytest.raises(ValidationError):
            OutboxSettings(batch_size=0)
        with pytest.raises(ValidationError):
            OutboxSettings(publish_timeout_seconds=0)

    def test_frozen(self):
        """Settings are immutable once loaded."""
        settings = OutboxSettings()
        with pytest.raises(ValidationError):
            settings.batch_size = 5


@pytest.mark.unit
class TestThrottleSettings:
    """Throttle ceilings and failure policy."""

    def test_defaults(self):
        """Defaults are 60/min, 1000/hour, 10000/day and fail open."""
        settings = ThrottleSettings()

        assert settings.ceilings() == {"minute": 60, "hour": 1000, "day": 10000}
        assert settings.fail_open is True
        assert settings.strict_admission is False

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        """THROTTLE_ variables configure ceilings."""
        monkeypatch.setenv("THROTTLE_PER_MINUTE", "5")
        monkeypatch.setenv("THROTTLE_FAIL_OPEN", "false")
        get_throttle_settings.cache_clear()

        settings = get_throttle_settings()

        assert settings.per_minute == 5
        assert settings.fail_open is False


@pytest.mark.unit
class TestJobSettings:
    """Job runner defaults."""

    def test_defaults(self):
        """Undeclared jobs use the default queue; failed escalations wait a minute."""
        settings = JobSettings()

        assert settings.default_queue == "default"
        assert settings.escalation_retry_delay_seconds == 60
        assert settings.throttle_reschedule_delay_seconds == 60

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        """JOB_ variables configure queue and delays."""
        monkeypatch.setenv("JOB_DEFAULT_QUEUE", "maintenance")
        monkeypatch.setenv("JOB_ESCALATION_RETRY_DELAY_SECONDS", "15")
        get_job_settings.cache_clear()

        settings = get_job_settings()

        assert settings.default_queue == "maintenance"
        assert settings.escalation_retry_delay_seconds == 15


@pytest.mark.unit
class TestConnectionSettings:
    """URL parsing for Redis, PostgreSQL and RabbitMQ."""

    def test_redis_url_parsed_into_components(self):
        """REDIS_URL populates host, port, db and password."""
        settings = RedisSettings(redis_url="redis://:secret@cache.internal:6380/2")

        assert settings.host == "cache.internal"
        assert settings.port == 6380
        assert settings.db == 2
        assert settings.password is not None
        assert settings.password.get_secret_value() == "secret"
        assert settings.is_configured
        assert settings.url == "redis://:secret@cache.internal:6380/2"

    def test_redis_not_configured_by_default(self):
        """Without a URL or host Redis counts as unconfigured."""
        assert not RedisSettings().is_configured

    def test_postgres_dsn_parsed(self):
        """DATABASE_URL populates connection components."""
        settings = PostgresSettings(dsn="postgresql+psycopg://app:pw@db:5433/orders")

        assert settings.host == "db"
        assert settings.port == 5433
        assert settings.user == "app"
        assert settings.name == "orders"
        assert settings.url.startswith("postgresql+psycopg://app:pw@db:5433/orders")

    def test_postgres_disabled(self):
        """A disabled database is never considered configured."""
        assert not PostgresSettings(enabled=False).is_configured

    def test_rabbit_queue_prefix(self):
        """Queue names carry the configured prefix."""
        settings = RabbitSettings(queue_prefix="delivery")

        assert settings.get_prefixed_queue("jobs") == "delivery.jobs"
        assert not settings.is_configured
