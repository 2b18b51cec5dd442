"""Services for the FortiKey core."""

from .analytics_service import AnalyticsService
from .base_service import SessionManagedService
from .credential_service import CredentialService
from .tenant_service import TenantService
from .usage_service import UsageService

__all__ = [
    "AnalyticsService",
    "SessionManagedService",
    "CredentialService",
    "TenantService",
    "UsageService",
]
