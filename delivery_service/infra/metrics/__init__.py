"""Metrics infrastructure (Prometheus)."""

from delivery_service.infra.metrics.prometheus import REGISTRY

__all__ = ["REGISTRY"]
