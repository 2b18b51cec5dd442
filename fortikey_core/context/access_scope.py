"""
Explicit access scopes for credential store queries.

The auth layer resolves the caller's capability once and passes one of these
into every store operation. Tenant callers get TenantScope; privileged
operators get AllTenantsScope.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ErrorCode, ValidationError


class TenantScope(BaseModel):
    """Restricts every query to a single tenant."""

    tenant_id: str = Field(min_length=1, max_length=100)

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @property
    def is_all_tenants(self) -> bool:
        return False

    def tenant_filter(self) -> Optional[str]:
        return self.tenant_id


class AllTenantsScope(BaseModel):
    """Privileged scope that sees credentials across all tenants."""

    model_config = ConfigDict(frozen=True)

    @property
    def is_all_tenants(self) -> bool:
        return True

    def tenant_filter(self) -> Optional[str]:
        return None


AccessScope = Union[TenantScope, AllTenantsScope]


def tenant_scope(tenant_id: str) -> TenantScope:
    """Build a TenantScope, rejecting blank tenant ids."""
    if not tenant_id or not str(tenant_id).strip():
        raise ValidationError(
            "tenant_id must be a non-empty string",
            error_code=ErrorCode.MISSING_REQUIRED,
            field="tenant_id",
        )
    return TenantScope(tenant_id=tenant_id)


def all_tenants_scope() -> AllTenantsScope:
    return AllTenantsScope()
