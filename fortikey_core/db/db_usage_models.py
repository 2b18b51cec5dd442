"""
Usage event model.

Append-only log of credential and tenant activity feeding the analytics rollups.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from .db_base import JSON, UUIDMixin, utc_now
from .db_config import Base


class UsageEvent(Base, UUIDMixin):
    """A single recorded usage event."""

    __tablename__ = "usage_events"

    # Nullable for pre-auth events such as rate limiting
    tenant_id = Column(String(100), nullable=True)
    external_user_id = Column(String(255), nullable=True)

    event_type = Column(String(50), nullable=False)
    success = Column(Boolean, nullable=False, default=True)
    details = Column(JSON, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    timestamp = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_usage_events_type_time", "tenant_id", "event_type", "timestamp"),
        Index("ix_usage_events_user_time", "tenant_id", "external_user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageEvent(id={self.id}, tenant_id={self.tenant_id}, "
            f"event_type={self.event_type}, success={self.success})>"
        )
