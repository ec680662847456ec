"""Dead-letter store: where terminally failed jobs end up."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from delivery_service.infra.metrics.prometheus import job_dead_lettered_total
from delivery_service.infra.tasks.dead_letter.repository import DeadLetterRepository
from delivery_service.utils.retry import Clock, system_clock

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from delivery_service.infra.tasks.dead_letter.models import DeadLetterEntry

logger = logging.getLogger(__name__)


def serialize_payload(payload: Mapping[str, Any] | str | bytes) -> str:
    """Payload as JSON text. Strings and bytes are kept exactly as given."""
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str)


def _tenant_from_payload(payload: Mapping[str, Any] | str | bytes) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    tenant = payload.get("tenant_id")
    return str(tenant) if tenant is not None else None


class DeadLetterStore:
    """Records jobs that must not be retried automatically.

    Each ``move`` runs in its own transaction so the entry is durable even
    when the surrounding job work is rolled back.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        repository: DeadLetterRepository | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.session_factory = session_factory
        self.repository = repository or DeadLetterRepository()
        self._clock = clock

    async def move(
        self,
        job_id: str,
        job_class: str,
        payload: Mapping[str, Any] | str | bytes,
        exception: BaseException | str | None,
        *,
        attempts_made: int,
        queue: str | None = None,
        tenant_id: str | None = None,
        exception_class: str | None = None,
    ) -> DeadLetterEntry:
        """Insert or refresh the dead-letter entry for ``job_id``.

        ``tenant_id`` falls back to the payload's ``tenant_id`` key.
        """
        if isinstance(exception, BaseException):
            exception_class = exception_class or type(exception).__name__
            message = str(exception)
        else:
            message = exception

        async with self.session_factory() as session, session.begin():
            entry = await self.repository.upsert(
                session,
                job_id=job_id,
                job_class=job_class,
                payload=serialize_payload(payload),
                exception_class=exception_class,
                exception_message=message,
                attempts_made=attempts_made,
                queue=queue,
                tenant_id=tenant_id or _tenant_from_payload(payload),
                moved_at=self._clock(),
            )

        job_dead_lettered_total.labels(job_class=job_class).inc()
        return entry

    async def get(self, job_id: str) -> DeadLetterEntry | None:
        async with self.session_factory() as session:
            return await self.repository.get_by_job_id(session, job_id)

    async def list_entries(
        self,
        *,
        tenant_id: str | None = None,
        job_class: str | None = None,
        limit: int = 100,
    ) -> Sequence[DeadLetterEntry]:
        async with self.session_factory() as session:
            return await self.repository.list_entries(
                session,
                tenant_id=tenant_id,
                job_class=job_class,
                limit=limit,
            )

    async def count(self, *, tenant_id: str | None = None) -> int:
        async with self.session_factory() as session:
            return await self.repository.count(session, tenant_id=tenant_id)

    async def discard(self, job_id: str) -> bool:
        async with self.session_factory() as session, session.begin():
            discarded = await self.repository.discard(session, job_id)
        if discarded:
            logger.info("Dead-letter entry discarded", extra={"job_id": job_id})
        return discarded


__all__ = ["DeadLetterStore", "serialize_payload"]
