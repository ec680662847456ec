"""Repository for dead-letter entries."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from delivery_service.infra.tasks.dead_letter.models import DeadLetterEntry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class DeadLetterRepository:
    """Dead-letter persistence.

    ``upsert`` is idempotent on ``job_id``: the same job escalated again
    refreshes the failure details and bumps ``escalation_count`` instead of
    raising.
    """

    async def upsert(
        self,
        session: AsyncSession,
        *,
        job_id: str,
        job_class: str,
        payload: str,
        exception_class: str | None,
        exception_message: str | None,
        attempts_made: int,
        queue: str | None,
        tenant_id: str | None,
        moved_at: datetime,
    ) -> DeadLetterEntry:
        values: dict[str, Any] = {
            "job_id": job_id,
            "job_class": job_class,
            "queue": queue,
            "payload": payload,
            "exception_class": exception_class,
            "exception_message": exception_message,
            "attempts_made": attempts_made,
            "escalation_count": 1,
            "tenant_id": tenant_id,
            "moved_at": moved_at,
        }
        dialect = session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Dead-letter upsert is not supported on {dialect}")

        stmt = insert(DeadLetterEntry).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DeadLetterEntry.job_id],
            set_={
                # Payload is the original input and stays as first recorded
                "exception_class": stmt.excluded.exception_class,
                "exception_message": stmt.excluded.exception_message,
                "attempts_made": stmt.excluded.attempts_made,
                "escalation_count": DeadLetterEntry.escalation_count + 1,
                "moved_at": stmt.excluded.moved_at,
            },
        )
        await session.execute(stmt)

        entry = await self.get_by_job_id(session, job_id, refresh=True)
        if entry is None:  # pragma: no cover - row was written above
            raise RuntimeError(f"Dead-letter entry for job {job_id} vanished after upsert")
        return entry

    async def get_by_job_id(
        self,
        session: AsyncSession,
        job_id: str,
        *,
        refresh: bool = False,
    ) -> DeadLetterEntry | None:
        stmt = select(DeadLetterEntry).where(DeadLetterEntry.job_id == job_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_entries(
        self,
        session: AsyncSession,
        *,
        tenant_id: str | None = None,
        job_class: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[DeadLetterEntry]:
        """Most recent escalations first."""
        stmt = select(DeadLetterEntry)
        if tenant_id is not None:
            stmt = stmt.where(DeadLetterEntry.tenant_id == tenant_id)
        if job_class is not None:
            stmt = stmt.where(DeadLetterEntry.job_class == job_class)
        stmt = stmt.order_by(DeadLetterEntry.moved_at.desc(), DeadLetterEntry.id.desc())
        result = await session.execute(stmt.limit(limit).offset(offset))
        return result.scalars().all()

    async def count(self, session: AsyncSession, *, tenant_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(DeadLetterEntry)
        if tenant_id is not None:
            stmt = stmt.where(DeadLetterEntry.tenant_id == tenant_id)
        return (await session.execute(stmt)).scalar_one()

    async def discard(self, session: AsyncSession, job_id: str) -> bool:
        """Delete an entry after manual remediation."""
        result = await session.execute(
            delete(DeadLetterEntry).where(DeadLetterEntry.job_id == job_id),
        )
        return result.rowcount == 1


__all__ = ["DeadLetterRepository"]
