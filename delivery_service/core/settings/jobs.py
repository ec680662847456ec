"""Idempotent job execution settings.

Provides settings for:
- Retry configuration
- Throttle reschedule delay
- Idempotency key retention
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class JobSettings(BaseSettings):
    """Configuration for the job runner."""

    # Retry configuration
    default_max_attempts: int = Field(default=3, ge=1, le=100)
    """Default maximum attempts for a job before it is dead-lettered."""

    backoff_base_seconds: float = Field(default=60.0, ge=0.0)
    """Base delay for exponential backoff between retries (seconds)."""

    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    """Multiplier for exponential backoff (delay = base * multiplier^(attempt-1))."""

    backoff_max_seconds: float = Field(default=3600.0, ge=0.0)
    """Maximum delay between retries (1 hour cap)."""

    # Throttling
    throttle_reschedule_delay_seconds: float = Field(default=60.0, ge=0.0)
    """Delay applied when a throttled invocation is put back on the queue."""

    escalation_retry_delay_seconds: float = Field(default=60.0, ge=0.0)
    """Delay before re-running an attempt whose retry or dead-letter write failed."""

    # Idempotency
    idempotency_ttl_seconds: int = Field(default=86400, ge=60)
    """How long a completed idempotency key is remembered."""

    idempotency_key_prefix: str = Field(default="job:done")
    """Counter store key prefix for completed idempotency keys."""

    default_queue: str = Field(default="default", min_length=1)
    """Queue used by jobs that don't declare one."""

    model_config = SettingsConfigDict(
        env_prefix="JOB_",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


__all__ = ["JobSettings"]
