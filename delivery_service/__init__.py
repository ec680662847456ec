"""Reliable delivery core: transactional outbox, dispatcher and idempotent jobs."""

__version__ = "0.1.0"
