"""Tenant admission control for job dispatch."""

from delivery_service.infra.ratelimit.throttle import AdmissionDecision, JobThrottle

__all__ = ["AdmissionDecision", "JobThrottle"]
