"""Execution context: tenant, request, access scope and operation tracking."""

from .access_scope import (
    AccessScope,
    AllTenantsScope,
    TenantScope,
    all_tenants_scope,
    tenant_scope,
)
from .operation_context import OperationContext, OperationHandler, operation
from .request_context import RequestContext, RequestInfo, request_context
from .tenant_context import TenantContext, tenant_context

__all__ = [
    "AccessScope",
    "AllTenantsScope",
    "TenantScope",
    "all_tenants_scope",
    "tenant_scope",
    "OperationContext",
    "OperationHandler",
    "operation",
    "RequestContext",
    "RequestInfo",
    "request_context",
    "TenantContext",
    "tenant_context",
]
