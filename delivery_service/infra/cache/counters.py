"""Shared counter store used for throttling and idempotency markers.

Counters must be incremented atomically in the store itself (Redis
``INCR``) rather than read-modified-written in application code, so
concurrent workers never lose updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from delivery_service.core.exceptions import CounterStoreError
from delivery_service.infra.metrics.prometheus import counter_store_errors_total
from delivery_service.utils.retry import Clock, system_clock

if TYPE_CHECKING:
    from delivery_service.core.settings import RedisSettings

logger = logging.getLogger(__name__)

# INCR and first-write EXPIRE in one round trip, atomic on the server
INCREMENT_SCRIPT = """
local count = redis.call("INCR", KEYS[1])
if count == 1 and tonumber(ARGV[1]) > 0 then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
end
return count
"""


@runtime_checkable
class CounterStore(Protocol):
    """Minimal shared-cache contract: atomic counters with TTLs."""

    async def increment(self, key: str, ttl: int | None = None) -> int:
        """Atomically add one; ``ttl`` applies when the key is created."""
        ...

    async def decrement(self, key: str) -> int:
        """Atomically subtract one."""
        ...

    async def get(self, key: str) -> int | None:
        """Current value, or None when missing or expired."""
        ...

    async def put(self, key: str, value: int, ttl: int | None = None) -> None:
        """Overwrite a value."""
        ...


class RedisCounterStore:
    """Counter store backed by Redis.

    Every Redis failure is re-raised as ``CounterStoreError`` so callers
    apply their own availability policy (the throttle fails open).

    Example:
        store = RedisCounterStore.from_settings(get_redis_settings())
        count = await store.increment("job_throttle:acme:emails:minute:29000000", ttl=60)
    """

    def __init__(self, client: Redis, *, key_prefix: str = "") -> None:
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> RedisCounterStore:
        pool = ConnectionPool.from_url(
            redis_settings.url,
            **redis_settings.connection_pool_kwargs(),
        )
        return cls(Redis(connection_pool=pool), key_prefix=redis_settings.key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def _fail(self, operation: str, key: str, exc: Exception) -> CounterStoreError:
        counter_store_errors_total.labels(operation=operation).inc()
        logger.warning(
            "Counter store operation failed",
            extra={"operation": operation, "key": key, "error": str(exc)},
        )
        return CounterStoreError(
            detail=f"Counter store {operation} failed: {exc}",
            extra={"key": key, "operation": operation},
        )

    async def increment(self, key: str, ttl: int | None = None) -> int:
        full_key = self._key(key)
        try:
            result = await self._client.eval(INCREMENT_SCRIPT, 1, full_key, ttl or 0)
        except RedisError as exc:
            raise self._fail("increment", key, exc) from exc
        return int(result)

    async def decrement(self, key: str) -> int:
        try:
            return int(await self._client.decr(self._key(key)))
        except RedisError as exc:
            raise self._fail("decrement", key, exc) from exc

    async def get(self, key: str) -> int | None:
        try:
            value = await self._client.get(self._key(key))
        except RedisError as exc:
            raise self._fail("get", key, exc) from exc
        return None if value is None else int(value)

    async def put(self, key: str, value: int, ttl: int | None = None) -> None:
        try:
            await self._client.set(self._key(key), value, ex=ttl)
        except RedisError as exc:
            raise self._fail("put", key, exc) from exc

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class _Entry:
    value: int
    expires_at: datetime | None


class InMemoryCounterStore:
    """Process-local counter store for tests and single-worker deployments.

    Expiry is evaluated against the injected clock, so tests can roll
    windows over without sleeping.
    """

    def __init__(self, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._data: dict[str, _Entry] = {}

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: int | None) -> datetime | None:
        if ttl is None:
            return None
        return self._clock() + timedelta(seconds=ttl)

    async def increment(self, key: str, ttl: int | None = None) -> int:
        entry = self._live(key)
        if entry is None:
            entry = self._data[key] = _Entry(value=0, expires_at=self._expiry(ttl))
        entry.value += 1
        return entry.value

    async def decrement(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            entry = self._data[key] = _Entry(value=0, expires_at=None)
        entry.value -= 1
        return entry.value

    async def get(self, key: str) -> int | None:
        entry = self._live(key)
        return None if entry is None else entry.value

    async def put(self, key: str, value: int, ttl: int | None = None) -> None:
        self._data[key] = _Entry(value=value, expires_at=self._expiry(ttl))

    def snapshot(self) -> dict[str, Any]:
        """Live keys and values (debugging aid)."""
        return {key: entry.value for key in list(self._data) if (entry := self._live(key))}


__all__ = ["CounterStore", "InMemoryCounterStore", "RedisCounterStore"]
