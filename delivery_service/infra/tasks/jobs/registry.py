"""Job class registry.

Workers resolve ``JobInvocation.job_class`` through this registry, so every
job module must be imported before the worker starts consuming.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from delivery_service.core.exceptions import UnknownJobError
from delivery_service.infra.tasks.jobs.base import IdempotentJob

logger = logging.getLogger(__name__)

J = TypeVar("J", bound=type[IdempotentJob])


class JobRegistry:
    """Maps symbolic job names to job classes."""

    def __init__(self) -> None:
        self._jobs: dict[str, type[IdempotentJob]] = {}

    def register(self, job_class: J) -> J:
        """Register a job class. Usable as a decorator.

        Raises:
            ValueError: If another class already uses the same name.
        """
        name = job_class.job_name()
        existing = self._jobs.get(name)
        if existing is not None and existing is not job_class:
            raise ValueError(f"Job '{name}' already registered with {existing.__qualname__}")
        self._jobs[name] = job_class
        logger.debug("Registered job", extra={"job_class": name, "queue": job_class.queue})
        return job_class

    def get(self, name: str) -> type[IdempotentJob]:
        """Resolve a job class by name.

        Raises:
            UnknownJobError: No job registered under ``name``.
        """
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobError(
                detail=f"Unknown job '{name}'",
                extra={"job_class": name, "registered": sorted(self._jobs)},
            ) from None

    def is_registered(self, name: str) -> bool:
        return name in self._jobs

    def list_jobs(self) -> list[str]:
        return sorted(self._jobs)

    def clear(self) -> None:
        self._jobs.clear()


job_registry = JobRegistry()


def register_job(job_class: J) -> J:
    """Register ``job_class`` in the global registry."""
    return job_registry.register(job_class)


__all__ = ["JobRegistry", "job_registry", "register_job"]
