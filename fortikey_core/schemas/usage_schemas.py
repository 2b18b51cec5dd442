"""Pydantic schemas for usage events."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import EventType


class UsageEventCreate(BaseModel):
    """A usage event to record. Missing timestamp and client details are filled in."""

    event_type: EventType
    success: bool = True
    tenant_id: Optional[str] = Field(None, max_length=100)
    external_user_id: Optional[str] = Field(None, max_length=255)
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = Field(None, max_length=64)
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)


class UsageEventRead(BaseModel):
    """Stored usage event."""

    id: str
    event_type: str
    success: bool
    tenant_id: Optional[str] = None
    external_user_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
