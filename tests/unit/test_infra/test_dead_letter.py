"""Tests for the dead-letter store."""
from __future__ import annotations

import pytest

from delivery_service.core.database.base import as_utc
from delivery_service.infra.tasks.dead_letter import DeadLetterStore, serialize_payload


@pytest.fixture
def store(session_factory, clock) -> DeadLetterStore:
    return DeadLetterStore(session_factory, clock=clock)


@pytest.mark.unit
class TestDeadLetterStore:
    """Escalation, inspection and removal of failed jobs."""

    @pytest.mark.asyncio
    async def test_move_records_failure(self, store, clock):
        """A moved job keeps its payload and failure details."""
        entry = await store.move(
            "job-1",
            "notifications.send",
            {"recipient": "a@example.com", "tenant_id": "acme"},
            ConnectionError("smtp refused"),
            attempts_made=3,
            queue="emails",
        )

        assert entry.job_class == "notifications.send"
        assert entry.exception_class == "ConnectionError"
        assert entry.exception_message == "smtp refused"
        assert entry.attempts_made == 3
        assert entry.escalation_count == 1
        assert entry.queue == "emails"
        assert entry.tenant_id == "acme"
        assert entry.payload_data == {"recipient": "a@example.com", "tenant_id": "acme"}
        assert as_utc(entry.moved_at) == clock()

    @pytest.mark.asyncio
    async def test_repeated_move_updates_single_entry(self, store, clock):
        """Escalating the same job again bumps the count instead of failing."""
        await store.move("job-1", "Reindex", {"project_id": "p-1"}, "first failure", attempts_made=3)
        clock.advance(minutes=5)
        entry = await store.move("job-1", "Reindex", {"project_id": "p-2"}, "second failure", attempts_made=1)

        assert await store.count() == 1
        assert entry.escalation_count == 2
        assert entry.exception_message == "second failure"
        assert entry.attempts_made == 1
        assert entry.payload_data == {"project_id": "p-1"}
        assert as_utc(entry.moved_at) == clock()

    @pytest.mark.asyncio
    async def test_list_and_count_by_tenant(self, store, clock):
        """Entries can be filtered by tenant and job class, newest first."""
        await store.move("job-1", "Reindex", {}, "boom", attempts_made=3, tenant_id="acme")
        clock.advance(seconds=1)
        await store.move("job-2", "Notify", {}, "boom", attempts_made=3, tenant_id="acme")
        clock.advance(seconds=1)
        await store.move("job-3", "Reindex", {}, "boom", attempts_made=3, tenant_id="globex")

        acme = await store.list_entries(tenant_id="acme")
        reindex = await store.list_entries(job_class="Reindex")

        assert [entry.job_id for entry in acme] == ["job-2", "job-1"]
        assert [entry.job_id for entry in reindex] == ["job-3", "job-1"]
        assert await store.count(tenant_id="acme") == 2
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_discard(self, store):
        """Discarding removes the entry once."""
        await store.move("job-1", "Reindex", {}, "boom", attempts_made=3)

        assert await store.discard("job-1") is True
        assert await store.discard("job-1") is False
        assert await store.get("job-1") is None


@pytest.mark.unit
class TestSerializePayload:
    """Payloads are stored as JSON text."""

    def test_mapping_is_dumped(self):
        """Mappings become JSON."""
        assert serialize_payload({"a": 1}) == '{"a": 1}'

    def test_text_kept_verbatim(self):
        """Strings and bytes are not re-encoded."""
        assert serialize_payload('{"b":2}') == '{"b":2}'
        assert serialize_payload(b'{"c":3}') == '{"c":3}'
