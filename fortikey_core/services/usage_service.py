"""
Usage event recording.

Recording is best-effort: a failure to persist an event is logged and
swallowed so it can never fail the authentication or provisioning operation
that produced it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..constants import EventType, Limits
from ..context.operation_context import operation
from ..context.request_context import RequestContext
from ..db.db_base import utc_now
from ..db.db_usage_models import UsageEvent
from ..schemas.usage_schemas import UsageEventCreate, UsageEventRead
from ..utils.crud_helpers import create_record, delete_records
from ..utils.logger import ContextAwareLogger
from .base_service import SessionManagedService


class UsageService(SessionManagedService):
    """Append-only recorder and reader for usage events."""

    def __init__(
        self,
        session: Optional[Session] = None,
        logger: Optional[ContextAwareLogger] = None,
    ):
        super().__init__(session=session, logger=logger)

    def record(self, event: UsageEventCreate) -> Optional[UsageEventRead]:
        """
        Persist a usage event without ever raising.

        Fills timestamp with the current UTC time and ip_address/user_agent
        from the current RequestContext when the event does not carry them.

        Args:
            event: Event to record

        Returns:
            The stored event, or None if it could not be persisted
        """
        try:
            data = event.model_dump()
            if data.get("timestamp") is None:
                data["timestamp"] = utc_now()

            request = RequestContext.get_current_request()
            if request is not None:
                if data.get("ip_address") is None:
                    data["ip_address"] = request.ip_address
                if data.get("user_agent") is None:
                    data["user_agent"] = request.user_agent

            record = create_record(self.session, UsageEvent, data)
            return UsageEventRead.model_validate(record)

        except Exception as e:
            try:
                self.session.rollback()
            except Exception as rollback_error:
                self.logger.warning(
                    "Rollback after failed usage event write also failed",
                    extra={"error": str(rollback_error)},
                )
            self.logger.warning(
                "Failed to record usage event",
                extra={
                    "event_type": str(event.event_type),
                    "tenant_id": event.tenant_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return None

    def record_event(
        self,
        tenant_id: Optional[str],
        event_type: Union[EventType, str],
        success: bool = True,
        external_user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[UsageEventRead]:
        """Convenience wrapper around record(); never raises either."""
        try:
            event = UsageEventCreate(
                tenant_id=tenant_id,
                event_type=event_type,
                success=success,
                external_user_id=external_user_id,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                timestamp=timestamp,
            )
        except ValueError as e:
            # pydantic's ValidationError subclasses ValueError
            self.logger.warning(
                "Discarding malformed usage event",
                extra={"event_type": str(event_type), "tenant_id": tenant_id, "error": str(e)},
            )
            return None
        return self.record(event)

    @operation()
    def delete_user_events(self, tenant_id: str, external_user_id: str) -> int:
        """Delete every event of one external user of a tenant. Returns the count removed."""
        return delete_records(
            self.session, UsageEvent, {"external_user_id": external_user_id}, tenant_id=tenant_id
        )

    @operation()
    def delete_tenant_events(self, tenant_id: str) -> int:
        """Delete every event of a tenant. Returns the count removed."""
        return delete_records(self.session, UsageEvent, {}, tenant_id=tenant_id)

    @operation()
    def list_events(
        self,
        tenant_id: str,
        event_type: Optional[Union[EventType, str]] = None,
        external_user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
    ) -> List[UsageEventRead]:
        """
        List a tenant's events, most recent first.

        Args:
            tenant_id: Tenant to read
            event_type: Optional event type filter
            external_user_id: Optional user filter
            since: Only events at or after this time
            limit: Maximum number of events

        Returns:
            List of UsageEventRead
        """
        try:
            query = self.session.query(UsageEvent).filter(UsageEvent.tenant_id == tenant_id)
            if event_type is not None:
                query = query.filter(UsageEvent.event_type == EventType(event_type).value)
            if external_user_id is not None:
                query = query.filter(UsageEvent.external_user_id == external_user_id)
            if since is not None:
                query = query.filter(UsageEvent.timestamp >= since)

            limit = max(1, min(limit, Limits.MAX_PAGE_SIZE))
            events = query.order_by(UsageEvent.timestamp.desc()).limit(limit).all()
            return [UsageEventRead.model_validate(event) for event in events]
        except Exception as e:
            self._handle_service_exception("list_events", e)
