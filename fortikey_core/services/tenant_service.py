"""
Tenant-level maintenance operations.

Tenant registration itself lives outside the core; this service only removes
everything the core holds for a tenant when it is offboarded.
"""

from typing import Optional

from sqlalchemy.orm import Session

from ..context.operation_context import operation
from ..db.db_credential_models import TOTPCredential
from ..exceptions import ErrorCode, ValidationError
from ..schemas.tenant_schemas import TenantPurgeResult
from ..utils.crud_helpers import delete_records
from .base_service import SessionManagedService
from .usage_service import UsageService


class TenantService(SessionManagedService):
    """Bulk operations spanning every credential and event of one tenant."""

    def __init__(
        self, session: Optional[Session] = None, usage_service: Optional[UsageService] = None
    ):
        super().__init__(session=session)
        self.usage_service = usage_service or UsageService(session=self.session)

    @operation()
    def offboard_tenant(self, tenant_id: str) -> TenantPurgeResult:
        """
        Delete every credential and usage event of a tenant.

        Args:
            tenant_id: Tenant being offboarded

        Returns:
            TenantPurgeResult with the number of rows removed

        Raises:
            ValidationError: If tenant_id is blank
            ServiceError: If the purge fails
        """
        if not tenant_id or not tenant_id.strip():
            raise ValidationError(
                "tenant_id must be a non-empty string",
                field="tenant_id",
                error_code=ErrorCode.MISSING_REQUIRED,
            )

        try:
            credentials_deleted = delete_records(
                self.session, TOTPCredential, {}, tenant_id=tenant_id
            )
            events_deleted = self.usage_service.delete_tenant_events(tenant_id)
        except Exception as e:
            self._handle_service_exception("offboard_tenant", e, entity_id=tenant_id)

        self.logger.info(
            "Tenant offboarded",
            extra={
                "tenant_id": tenant_id,
                "credentials_deleted": credentials_deleted,
                "events_deleted": events_deleted,
            },
        )
        return TenantPurgeResult(
            tenant_id=tenant_id,
            credentials_deleted=credentials_deleted,
            events_deleted=events_deleted,
        )
