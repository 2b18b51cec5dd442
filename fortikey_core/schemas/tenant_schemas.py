"""Pydantic schemas for tenant-level operations."""

from pydantic import BaseModel, Field


class TenantPurgeResult(BaseModel):
    """Counts removed by tenant offboarding."""

    tenant_id: str
    credentials_deleted: int = Field(ge=0)
    events_deleted: int = Field(ge=0)
