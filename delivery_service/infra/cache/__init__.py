"""Cache infrastructure (shared counters)."""

from delivery_service.infra.cache.counters import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)

__all__ = ["CounterStore", "InMemoryCounterStore", "RedisCounterStore"]
