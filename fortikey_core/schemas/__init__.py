"""Pydantic schemas for the FortiKey core."""

from .credential_schemas import (
    BackupCodesRegenerated,
    BackupCodeValidationResult,
    CredentialCreate,
    CredentialProvisioned,
    CredentialRead,
    CredentialUpdate,
    TokenValidationResult,
)
from .tenant_schemas import TenantPurgeResult
from .usage_schemas import UsageEventCreate, UsageEventRead

__all__ = [
    "BackupCodesRegenerated",
    "BackupCodeValidationResult",
    "CredentialCreate",
    "CredentialProvisioned",
    "CredentialRead",
    "CredentialUpdate",
    "TokenValidationResult",
    "TenantPurgeResult",
    "UsageEventCreate",
    "UsageEventRead",
]
