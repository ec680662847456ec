"""Per-tenant job throttling settings.

Environment variables use THROTTLE_ prefix.
Example: THROTTLE_PER_MINUTE=120

Ceilings apply to each (tenant, queue) pair independently.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ThrottleSettings(BaseSettings):
    """Admission control ceilings and failure policy."""

    enabled: bool = Field(
        default=True,
        description="Enable per-tenant throttling of job dispatch",
    )
    per_minute: int = Field(default=60, ge=1, description="Dispatches per tenant/queue per minute")
    per_hour: int = Field(default=1000, ge=1, description="Dispatches per tenant/queue per hour")
    per_day: int = Field(default=10000, ge=1, description="Dispatches per tenant/queue per day")

    fail_open: bool = Field(
        default=True,
        description=(
            "Admit dispatches when the counter store is unavailable. "
            "Operators should treat this as a risk: an outage disables throttling."
        ),
    )
    strict_admission: bool = Field(
        default=False,
        description="Use increment-then-check-and-rollback instead of check-then-increment",
    )
    key_prefix: str = Field(
        default="job_throttle",
        min_length=1,
        max_length=50,
        pattern=r"^[a-zA-Z0-9_:-]+$",
        description="Counter store key prefix",
    )

    model_config = SettingsConfigDict(
        env_prefix="THROTTLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    def ceilings(self) -> dict[str, int]:
        """Window name -> ceiling mapping."""
        return {
            "minute": self.per_minute,
            "hour": self.per_hour,
            "day": self.per_day,
        }


__all__ = ["ThrottleSettings"]
