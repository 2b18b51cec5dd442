"""
The tenant an operation is running for.

Log records and the operation decorator read it for attribution only.
Authorization never does: services take an explicit AccessScope.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional

from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger


class TenantContext:
    """Thread-local holder for the current tenant id."""

    _thread_local = threading.local()

    @classmethod
    def set_current_tenant(cls, tenant_id: str) -> None:
        """
        Bind tenant_id to the current thread, stripped of surrounding whitespace.

        Raises:
            ValidationError: MISSING_REQUIRED if tenant_id is not a non-blank string
        """
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError(
                "tenant_id must be a non-empty string",
                field="tenant_id",
                error_code=ErrorCode.MISSING_REQUIRED,
                value=tenant_id,
            )
        cls._thread_local.tenant_id = tenant_id.strip()
        get_logger().debug("Tenant bound", extra={"tenant_id": cls._thread_local.tenant_id})

    @classmethod
    def get_current_tenant_id(cls) -> Optional[str]:
        return getattr(cls._thread_local, "tenant_id", None)

    @classmethod
    def clear_current_tenant(cls) -> None:
        if hasattr(cls._thread_local, "tenant_id"):
            del cls._thread_local.tenant_id


@contextmanager
def tenant_context(tenant_id: str) -> Generator[None, None, None]:
    """Bind tenant_id for the block, then restore whatever was bound before."""
    previous = TenantContext.get_current_tenant_id()
    TenantContext.set_current_tenant(tenant_id)
    try:
        yield
    finally:
        if previous is not None:
            TenantContext.set_current_tenant(previous)
        else:
            TenantContext.clear_current_tenant()
