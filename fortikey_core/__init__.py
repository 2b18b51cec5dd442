"""
FortiKey core: multi-tenant TOTP credentials, backup codes and usage analytics.
"""

from .config import AppConfig, get_config, reset_config, set_config
from .constants import AnalyticsKind, EventType, IVMode
from .context import (
    AccessScope,
    AllTenantsScope,
    TenantScope,
    all_tenants_scope,
    request_context,
    tenant_context,
    tenant_scope,
)
from .exceptions import (
    BaseError,
    ConfigurationError,
    CredentialNotFoundError,
    DuplicateCredentialError,
    ErrorCode,
    ServiceError,
    ValidationError,
)
from .services import AnalyticsService, CredentialService, TenantService, UsageService
from .utils import SecretCodec, configure_logging, get_logger

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "get_config",
    "reset_config",
    "set_config",
    "AnalyticsKind",
    "EventType",
    "IVMode",
    "AccessScope",
    "AllTenantsScope",
    "TenantScope",
    "all_tenants_scope",
    "request_context",
    "tenant_context",
    "tenant_scope",
    "BaseError",
    "ConfigurationError",
    "CredentialNotFoundError",
    "DuplicateCredentialError",
    "ErrorCode",
    "ServiceError",
    "ValidationError",
    "AnalyticsService",
    "CredentialService",
    "TenantService",
    "UsageService",
    "SecretCodec",
    "configure_logging",
    "get_logger",
]
