"""Idempotency keys and completion markers for consumer jobs.

A key is derived from (tenant, user, action, payload) and must be stable
across retries and redeliveries so a consumer can recognise work it has
already done:

    derive_idempotency_key("acme", "u-1", "reindex_project", {"project_id": "p-1"})
    # -> "acme_u-1_reindex_project_<16 hex chars>"
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from delivery_service.infra.cache.counters import CounterStore

logger = logging.getLogger(__name__)

PAYLOAD_HASH_LENGTH = 16

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")


def snake_case(name: str) -> str:
    """``ReindexProjectJob`` -> ``reindex_project_job``; ``HTTPSync`` -> ``http_sync``."""
    spaced = _CAMEL_BOUNDARY.sub("_", name)
    return _NON_WORD.sub("_", spaced).strip("_").lower()


def canonical_json(payload: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace, non-JSON values via str()."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def payload_hash(payload: Any) -> str:
    """First 16 hex characters of the sha256 of the canonical payload."""
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return digest[:PAYLOAD_HASH_LENGTH]


def derive_idempotency_key(
    tenant_id: str | None,
    user_id: str | int | None,
    action_name: str,
    payload: Mapping[str, Any] | None,
) -> str:
    """Join tenant, user, action and payload hash with ``_``, dropping empty parts."""
    parts = [
        str(tenant_id) if tenant_id is not None else "",
        str(user_id) if user_id is not None else "",
        action_name,
        payload_hash(dict(payload or {})),
    ]
    return "_".join(part for part in parts if part)


class IdempotencyGuard:
    """Remembers completed idempotency keys in the counter store.

    The runner checks ``is_completed`` before executing and calls
    ``mark_completed`` after a successful run, so a redelivered invocation
    of finished work is acknowledged without running twice. Markers expire
    after ``ttl_seconds``.
    """

    def __init__(
        self,
        store: CounterStore,
        *,
        ttl_seconds: int = 86400,
        key_prefix: str = "job:done",
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, idempotency_key: str) -> str:
        return f"{self.key_prefix}:{idempotency_key}"

    async def is_completed(self, idempotency_key: str) -> bool:
        return bool(await self.store.get(self._key(idempotency_key)))

    async def mark_completed(self, idempotency_key: str) -> None:
        await self.store.put(self._key(idempotency_key), 1, ttl=self.ttl_seconds)

    async def forget(self, idempotency_key: str) -> None:
        """Allow the key to run again (operator replay)."""
        await self.store.put(self._key(idempotency_key), 0, ttl=1)


__all__ = [
    "PAYLOAD_HASH_LENGTH",
    "IdempotencyGuard",
    "canonical_json",
    "derive_idempotency_key",
    "payload_hash",
    "snake_case",
]
