"""Infrastructure: persistence, cache, logging, metrics, outbox and background tasks."""
