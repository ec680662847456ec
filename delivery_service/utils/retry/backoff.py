from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Maps a 1-based attempt number to the delay before the next try.

    Defaults give 60s, 120s, 240s, ... capped at one hour.
    """

    base_seconds: float = 60.0
    multiplier: float = 2.0
    max_seconds: float = 3600.0
    jitter: bool = False
    jitter_range: tuple[float, float] = (0.5, 1.5)

    def __post_init__(self) -> None:
        if self.base_seconds < 0 or self.max_seconds < 0:
            raise ValueError("backoff delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("backoff multiplier must be >= 1")

    @classmethod
    def fixed(cls, seconds: float) -> BackoffPolicy:
        return cls(base_seconds=seconds, multiplier=1.0, max_seconds=seconds)

    @classmethod
    def from_settings(cls, settings: Any) -> BackoffPolicy:
        # Works for OutboxSettings and JobSettings alike
        return cls(
            base_seconds=settings.backoff_base_seconds,
            multiplier=settings.backoff_multiplier,
            max_seconds=settings.backoff_max_seconds,
        )

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        delay = min(self.base_seconds * (self.multiplier ** (attempt - 1)), self.max_seconds)
        if self.jitter:
            delay *= random.uniform(*self.jitter_range)
        return delay

    def delta(self, attempt: int) -> timedelta:
        return timedelta(seconds=self.delay(attempt))

    def next_retry_at(self, attempt: int, now: datetime) -> datetime:
        return now + self.delta(attempt)

    def schedule(self, attempts: int) -> list[float]:
        return [self.delay(n) for n in range(1, attempts + 1)]
