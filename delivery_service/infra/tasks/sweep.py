"""Periodic outbox sweep.

One sweep publishes due pending events, re-attempts reopened failed events
with half the batch size so retries don't starve fresh events, and
releases claims abandoned by crashed workers. Errors propagate to the
caller's retry mechanism; a failed sweep never corrupts outbox rows, the
next run simply picks the work up again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from delivery_service.infra.metrics.prometheus import (
    outbox_last_sweep_timestamp_seconds,
    outbox_sweep_runs_total,
)

if TYPE_CHECKING:
    from delivery_service.infra.events.outbox.dispatcher import OutboxDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepResult:
    processed: int
    retried: int
    reclaimed: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


async def run_outbox_sweep(dispatcher: OutboxDispatcher, limit: int | None = None) -> SweepResult:
    """ProcessPendingEvents(limit), then RetryFailedEvents(limit // 2), then reclaim."""
    limit = limit or dispatcher.settings.batch_size
    start = time.perf_counter()
    try:
        processed = await dispatcher.process_pending_events(limit)
        retried = await dispatcher.retry_failed_events(max(1, limit // 2))
        reclaimed = await dispatcher.reclaim_stuck_events(limit)
    except Exception:
        outbox_sweep_runs_total.labels(result="error").inc()
        logger.exception("Outbox sweep failed", extra={"limit": limit})
        raise

    result = SweepResult(processed=processed, retried=retried, reclaimed=reclaimed)
    outbox_sweep_runs_total.labels(result="success").inc()
    outbox_last_sweep_timestamp_seconds.set_to_current_time()
    logger.info(
        "Outbox sweep completed",
        extra={**result.as_dict(), "limit": limit, "duration": round(time.perf_counter() - start, 3)},
    )
    return result


__all__ = ["SweepResult", "run_outbox_sweep"]
