from __future__ import annotations

from delivery_service.utils.retry.backoff import BackoffPolicy, Clock, system_clock

__all__ = ["BackoffPolicy", "Clock", "system_clock"]
