"""Outbox dispatcher configuration settings.

Environment variables use OUTBOX_ prefix.
Example: OUTBOX_BATCH_SIZE=200
"""

from __future__ import annotations

import os
import socket

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class OutboxSettings(BaseSettings):
    """Transactional outbox and dispatcher settings.

    The backoff fields describe the default retry schedule for failed
    publishes: attempt 1 waits ``backoff_base_seconds``, each following
    attempt multiplies the delay by ``backoff_multiplier`` up to
    ``backoff_max_seconds``.
    """

    # ─────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────
    batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum events claimed per ProcessPendingEvents call",
    )
    retry_batch_ratio: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Share of batch_size used for RetryFailedEvents so retries don't starve fresh events",
    )
    poll_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Interval between scheduled sweeps",
    )

    # ─────────────────────────────────────────────────────
    # Retry policy
    # ─────────────────────────────────────────────────────
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Default max publish attempts for new events",
    )
    backoff_base_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Delay before the first retry",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier",
    )
    backoff_max_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Upper bound for a single backoff delay",
    )

    # ─────────────────────────────────────────────────────
    # Claims and timeouts
    # ─────────────────────────────────────────────────────
    publish_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Time bound for a single Publisher call; expiry counts as a failure",
    )
    visibility_timeout_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Age after which a 'processing' claim is considered abandoned",
    )
    worker_id: str = Field(
        default_factory=_default_worker_id,
        min_length=1,
        max_length=255,
        description="Identifier written to claimed_by",
    )

    # ─────────────────────────────────────────────────────
    # Payload handling
    # ─────────────────────────────────────────────────────
    strict_payloads: bool = Field(
        default=False,
        description="Reject event types that have no registered payload schema",
    )
    error_message_max_length: int = Field(
        default=1000,
        ge=64,
        description="Truncate stored publish errors to this length",
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @computed_field  # type: ignore[misc]
    @property
    def retry_batch_size(self) -> int:
        """Batch size used for RetryFailedEvents (at least 1)."""
        return max(1, int(self.batch_size * self.retry_batch_ratio))


__all__ = ["OutboxSettings"]
