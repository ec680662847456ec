"""Repository for OutboxEvent state transitions.

Provides methods for:
- Selecting claimable events (pending, or reopened failed events)
- Claiming a single event with a compare-and-set update
- Recording publish outcomes for events the caller still owns
- Reclaiming claims abandoned by crashed workers
- Operator inspection, reopening and cleanup

Every method takes the caller's session and never commits; transaction
boundaries belong to the dispatcher.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import and_, delete, func, or_, select, update

from delivery_service.infra.events.outbox.models import OutboxEvent, OutboxStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql.elements import ColumnElement

    from delivery_service.utils.retry import BackoffPolicy

CLAIM_EXPIRED_MESSAGE = "claim expired"


def _due(now: datetime) -> ColumnElement[bool]:
    return or_(OutboxEvent.next_retry_at.is_(None), OutboxEvent.next_retry_at <= now)


def _claimable(status: OutboxStatus, now: datetime) -> ColumnElement[bool]:
    """Rows in ``status`` that may be claimed right now.

    Failed rows only qualify while they still have attempts left, which is
    only the case after an operator reopened them.
    """
    clauses = [OutboxEvent.status == status.value, _due(now)]
    if status is OutboxStatus.FAILED:
        clauses.append(OutboxEvent.attempts < OutboxEvent.max_attempts)
    return and_(*clauses)


def _owned_by(worker_id: str) -> ColumnElement[bool]:
    return and_(
        OutboxEvent.status == OutboxStatus.PROCESSING.value,
        OutboxEvent.claimed_by == worker_id,
    )


class OutboxRepository:
    """Outbox queries and guarded state transitions.

    Claims and outcome updates are conditional UPDATE statements whose row
    count tells the caller whether it won: a worker can never overwrite a
    row it does not currently own.
    """

    async def add(self, session: AsyncSession, event: OutboxEvent) -> OutboxEvent:
        """Stage an event in the caller's transaction and assign its id."""
        session.add(event)
        await session.flush()
        return event

    async def get(self, session: AsyncSession, event_id: int) -> OutboxEvent | None:
        return await session.get(OutboxEvent, event_id)

    async def claimable_ids(
        self,
        session: AsyncSession,
        *,
        status: OutboxStatus,
        now: datetime,
        limit: int,
    ) -> list[int]:
        """Select up to ``limit`` claimable event ids, oldest first.

        Uses FOR UPDATE SKIP LOCKED so concurrent dispatchers skip rows
        another worker is claiming at this instant.
        """
        stmt = (
            select(OutboxEvent.id)
            .where(_claimable(status, now))
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def claim(
        self,
        session: AsyncSession,
        event_id: int,
        *,
        expected_status: OutboxStatus,
        worker_id: str,
        now: datetime,
    ) -> OutboxEvent | None:
        """Move one event to ``processing`` if it is still claimable.

        Returns:
            The claimed event, or None when another worker got there first.
        """
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, _claimable(expected_status, now))
            .values(
                status=OutboxStatus.PROCESSING.value,
                claimed_by=worker_id,
                claimed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await session.get(OutboxEvent, event_id, populate_existing=True)

    async def mark_published(
        self,
        session: AsyncSession,
        event_id: int,
        *,
        worker_id: str,
        now: datetime,
    ) -> bool:
        """Record a successful publish. False if the claim was lost."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, _owned_by(worker_id))
            .values(
                status=OutboxStatus.PUBLISHED.value,
                published_at=now,
                next_retry_at=None,
                error_message=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_failed(
        self,
        session: AsyncSession,
        event_id: int,
        *,
        worker_id: str,
        error_message: str,
        now: datetime,
        backoff: BackoffPolicy,
    ) -> OutboxStatus | None:
        """Record a failed publish attempt.

        Increments ``attempts``. With attempts left the event returns to
        ``pending`` with ``next_retry_at = now + backoff(attempts)``;
        otherwise it becomes terminal ``failed``.

        Returns:
            The new status, or None if the claim was lost.
        """
        return await self._fail_attempt(
            session,
            event_id,
            owner=_owned_by(worker_id),
            error_message=error_message,
            now=now,
            backoff=backoff,
        )

    async def reclaim_stuck(
        self,
        session: AsyncSession,
        *,
        claimed_before: datetime,
        now: datetime,
        backoff: BackoffPolicy,
        limit: int,
    ) -> list[tuple[int, OutboxStatus]]:
        """Release ``processing`` claims older than ``claimed_before``.

        An abandoned claim counts as a failed attempt, so an event that
        crashes its worker every time still runs out of attempts and ends
        up terminal instead of cycling forever.

        Returns:
            (event id, new status) for each reclaimed event.
        """
        stmt = (
            select(OutboxEvent.id, OutboxEvent.claimed_by)
            .where(
                OutboxEvent.status == OutboxStatus.PROCESSING.value,
                OutboxEvent.claimed_at < claimed_before,
            )
            .order_by(OutboxEvent.claimed_at.asc(), OutboxEvent.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = (await session.execute(stmt)).all()

        reclaimed: list[tuple[int, OutboxStatus]] = []
        for event_id, claimed_by in rows:
            owner = and_(
                OutboxEvent.status == OutboxStatus.PROCESSING.value,
                OutboxEvent.claimed_by == claimed_by,
                OutboxEvent.claimed_at < claimed_before,
            )
            status = await self._fail_attempt(
                session,
                event_id,
                owner=owner,
                error_message=CLAIM_EXPIRED_MESSAGE,
                now=now,
                backoff=backoff,
            )
            if status is not None:
                reclaimed.append((event_id, status))
        return reclaimed

    async def _fail_attempt(
        self,
        session: AsyncSession,
        event_id: int,
        *,
        owner: ColumnElement[bool],
        error_message: str,
        now: datetime,
        backoff: BackoffPolicy,
    ) -> OutboxStatus | None:
        current = (
            await session.execute(
                select(OutboxEvent.attempts, OutboxEvent.max_attempts).where(
                    OutboxEvent.id == event_id,
                    owner,
                ),
            )
        ).one_or_none()
        if current is None:
            return None

        attempts = current.attempts + 1
        if attempts >= current.max_attempts:
            status = OutboxStatus.FAILED
            next_retry_at = None
        else:
            status = OutboxStatus.PENDING
            next_retry_at = backoff.next_retry_at(attempts, now)

        stmt = (
            update(OutboxEvent)
            # attempts in the predicate turns this into a compare-and-set
            .where(OutboxEvent.id == event_id, owner, OutboxEvent.attempts == current.attempts)
            .values(
                status=status.value,
                attempts=attempts,
                next_retry_at=next_retry_at,
                error_message=error_message,
                claimed_by=None,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return status if result.rowcount == 1 else None

    async def reopen(
        self,
        session: AsyncSession,
        event_id: int,
        *,
        additional_attempts: int = 1,
        now: datetime,
    ) -> bool:
        """Give a terminal-failed event more attempts (operator action).

        The event stays ``failed`` but becomes eligible for
        RetryFailedEvents, which is the only path that picks it up again.
        """
        if additional_attempts < 1:
            raise ValueError("additional_attempts must be >= 1")
        stmt = (
            update(OutboxEvent)
            .where(
                OutboxEvent.id == event_id,
                OutboxEvent.status == OutboxStatus.FAILED.value,
                OutboxEvent.attempts >= OutboxEvent.max_attempts,
            )
            .values(
                max_attempts=OutboxEvent.attempts + additional_attempts,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        """Event counts per status, zero-filled. Useful for alerting."""
        stmt = select(OutboxEvent.status, func.count()).group_by(OutboxEvent.status)
        counts = {status.value: 0 for status in OutboxStatus}
        for status, count in (await session.execute(stmt)).all():
            counts[status] = count
        return counts

    async def list_failed(
        self,
        session: AsyncSession,
        *,
        terminal_only: bool = True,
        limit: int = 100,
    ) -> Sequence[OutboxEvent]:
        """Failed events for operator review, oldest first."""
        stmt = select(OutboxEvent).where(OutboxEvent.status == OutboxStatus.FAILED.value)
        if terminal_only:
            stmt = stmt.where(OutboxEvent.attempts >= OutboxEvent.max_attempts)
        stmt = stmt.order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc()).limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def cleanup_published(
        self,
        session: AsyncSession,
        *,
        older_than_days: int = 7,
        now: datetime,
    ) -> int:
        """Delete published events older than ``older_than_days``.

        Returns:
            Number of events deleted
        """
        cutoff = now - timedelta(days=older_than_days)
        stmt = delete(OutboxEvent).where(
            OutboxEvent.status == OutboxStatus.PUBLISHED.value,
            OutboxEvent.published_at < cutoff,
        )
        result = await session.execute(stmt)
        return result.rowcount


__all__ = ["CLAIM_EXPIRED_MESSAGE", "OutboxRepository"]
