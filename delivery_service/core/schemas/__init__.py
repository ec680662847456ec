"""Shared schemas."""

from delivery_service.core.schemas.tenant import EventMetadata, TenantContext

__all__ = ["EventMetadata", "TenantContext"]
