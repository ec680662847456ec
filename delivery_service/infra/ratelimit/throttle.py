"""Per-tenant job admission control.

Three fixed-bucket counters per (tenant, queue) pair cap how many jobs a
single tenant may dispatch per minute, hour and day, so one tenant's burst
cannot starve the others sharing a physical queue. This is admission
control at the tenant boundary, not a global rate limit.

Two admission modes are available:

- ``can_dispatch`` followed by ``record_dispatch`` (default). Check then
  increment is not atomic across workers, so concurrent dispatchers may
  overshoot a ceiling by roughly the number of workers. Accepted as a
  soft limit.
- ``acquire`` (``THROTTLE_STRICT_ADMISSION=true``). Increments every window
  first, then rolls the increments back if any ceiling was exceeded. Never
  admits past a ceiling, at the cost of extra round trips.

If the counter store is unavailable the throttle fails open by default and
admits the job. Operators should alert on ``throttle_fail_open_total``:
while it is rising no tenant is being limited.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from delivery_service.core.exceptions import CounterStoreError
from delivery_service.core.settings import ThrottleSettings, get_throttle_settings
from delivery_service.infra.cache.counters import CounterStore
from delivery_service.infra.metrics.prometheus import (
    job_throttled_total,
    throttle_fail_open_total,
)
from delivery_service.utils.retry import Clock, system_clock

logger = logging.getLogger(__name__)

WINDOW_SECONDS: dict[str, int] = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

GLOBAL_TENANT = "global"


@dataclass(frozen=True, slots=True)
class WindowKey:
    window: str
    key: str
    ttl: int
    ceiling: int


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    """Outcome of an admission check."""

    allowed: bool
    exceeded_window: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    store_available: bool = True


class JobThrottle:
    """Sliding per-tenant counters with independent ceilings per window.

    Example:
        throttle = JobThrottle(RedisCounterStore.from_settings(get_redis_settings()))
        if await throttle.can_dispatch("acme", "emails"):
            await throttle.record_dispatch("acme", "emails")
            ...
    """

    def __init__(
        self,
        store: CounterStore,
        settings: ThrottleSettings | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.store = store
        self.settings = settings or get_throttle_settings()
        self._clock = clock

    def window_keys(self, tenant_id: str | None, queue: str) -> list[WindowKey]:
        """Counter keys for the bucket each window is currently in."""
        now = self._clock().timestamp()
        tenant = tenant_id or GLOBAL_TENANT
        ceilings = self.settings.ceilings()
        return [
            WindowKey(
                window=window,
                key=f"{self.settings.key_prefix}:{tenant}:{queue}:{window}:{int(now // seconds)}",
                ttl=seconds,
                ceiling=ceilings[window],
            )
            for window, seconds in WINDOW_SECONDS.items()
        ]

    async def check(self, tenant_id: str | None, queue: str) -> AdmissionDecision:
        """Read all windows and report the first one at or over its ceiling."""
        if not self.settings.enabled:
            return AdmissionDecision(allowed=True)

        keys = self.window_keys(tenant_id, queue)
        counts: dict[str, int] = {}
        try:
            for wk in keys:
                counts[wk.window] = await self.store.get(wk.key) or 0
        except CounterStoreError as exc:
            return self._store_unavailable(tenant_id, queue, exc)

        for wk in keys:
            if counts[wk.window] >= wk.ceiling:
                return self._throttled(tenant_id, queue, wk, counts)
        return AdmissionDecision(allowed=True, counts=counts)

    async def can_dispatch(self, tenant_id: str | None, queue: str) -> bool:
        """True unless any window is at or above its ceiling."""
        return (await self.check(tenant_id, queue)).allowed

    async def record_dispatch(self, tenant_id: str | None, queue: str) -> None:
        """Count one dispatch in every window."""
        if not self.settings.enabled:
            return
        try:
            for wk in self.window_keys(tenant_id, queue):
                await self.store.increment(wk.key, ttl=wk.ttl)
        except CounterStoreError as exc:
            # Not recording cannot block work; the next check applies the policy
            logger.warning(
                "Failed to record dispatch",
                extra={"tenant_id": tenant_id, "queue": queue, "error": exc.detail},
            )

    async def acquire(self, tenant_id: str | None, queue: str) -> bool:
        """Atomically reserve a slot in every window or none of them."""
        if not self.settings.enabled:
            return True

        incremented: list[WindowKey] = []
        counts: dict[str, int] = {}
        try:
            for wk in self.window_keys(tenant_id, queue):
                counts[wk.window] = await self.store.increment(wk.key, ttl=wk.ttl)
                incremented.append(wk)
                if counts[wk.window] > wk.ceiling:
                    await self._rollback(incremented)
                    self._throttled(tenant_id, queue, wk, counts)
                    return False
        except CounterStoreError as exc:
            await self._rollback(incremented)
            return self._store_unavailable(tenant_id, queue, exc).allowed
        return True

    async def usage(self, tenant_id: str | None, queue: str) -> dict[str, dict[str, int]]:
        """Current count and ceiling per window, for operator inspection."""
        usage: dict[str, dict[str, int]] = {}
        for wk in self.window_keys(tenant_id, queue):
            usage[wk.window] = {
                "count": await self.store.get(wk.key) or 0,
                "ceiling": wk.ceiling,
            }
        return usage

    async def _rollback(self, keys: list[WindowKey]) -> None:
        for wk in keys:
            try:
                await self.store.decrement(wk.key)
            except CounterStoreError:
                logger.warning("Failed to roll back throttle counter", extra={"key": wk.key})

    def _throttled(
        self,
        tenant_id: str | None,
        queue: str,
        wk: WindowKey,
        counts: dict[str, int],
    ) -> AdmissionDecision:
        job_throttled_total.labels(queue=queue).inc()
        logger.info(
            "Dispatch throttled",
            extra={
                "tenant_id": tenant_id,
                "queue": queue,
                "window": wk.window,
                "ceiling": wk.ceiling,
                "count": counts.get(wk.window),
            },
        )
        return AdmissionDecision(allowed=False, exceeded_window=wk.window, counts=counts)

    def _store_unavailable(
        self,
        tenant_id: str | None,
        queue: str,
        exc: CounterStoreError,
    ) -> AdmissionDecision:
        allowed = self.settings.fail_open
        if allowed:
            throttle_fail_open_total.labels(queue=queue).inc()
        logger.error(
            "Throttle counter store unavailable, %s",
            "admitting" if allowed else "rejecting",
            extra={"tenant_id": tenant_id, "queue": queue, "error": exc.detail},
        )
        return AdmissionDecision(allowed=allowed, store_available=False)


__all__ = ["WINDOW_SECONDS", "AdmissionDecision", "JobThrottle", "WindowKey"]
