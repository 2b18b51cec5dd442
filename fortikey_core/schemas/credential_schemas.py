"""
Pydantic schemas for TOTP credentials.

Read schemas carry plaintext secrets and backup codes; the database only ever
holds their ciphertext.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.backup_code_utils import normalize_backup_code


class BaseCredentialSchema(BaseModel):
    """Base schema for credential payloads."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )


def normalize_code_list(codes: Optional[List[str]]) -> Optional[List[str]]:
    """Normalize supplied backup codes, rejecting blanks and repeats."""
    if codes is None:
        return codes
    normalized = [normalize_backup_code(code) for code in codes]
    if any(not code for code in normalized):
        raise ValueError("Backup codes cannot be empty")
    if len(set(normalized)) != len(normalized):
        raise ValueError("Backup codes must be unique")
    return normalized


class CredentialCreate(BaseCredentialSchema):
    """Input for provisioning a credential."""

    tenant_id: str = Field(..., min_length=1, max_length=100)
    external_user_id: str = Field(..., min_length=1, max_length=255)
    tenant_label: str = Field(..., min_length=1, description="Shown as issuer in authenticator apps")
    backup_codes: Optional[List[str]] = Field(
        None, description="Explicit backup codes; generated when omitted"
    )
    created_by: Optional[str] = None

    @field_validator("backup_codes")
    @classmethod
    def normalize_codes(cls, v):
        return normalize_code_list(v)


class CredentialUpdate(BaseCredentialSchema):
    """Mutable fields of a credential. The secret is not one of them."""

    context: Optional[Dict[str, Any]] = None
    backup_codes: Optional[List[str]] = None

    @field_validator("backup_codes")
    @classmethod
    def normalize_codes(cls, v):
        return normalize_code_list(v)


class CredentialRead(BaseModel):
    """Decrypted view of a stored credential."""

    id: str
    tenant_id: str
    external_user_id: str
    secret: str
    backup_codes: List[str] = Field(default_factory=list)
    context: Optional[Dict[str, Any]] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CredentialProvisioned(BaseModel):
    """Everything the caller needs to enroll the user's authenticator."""

    id: str
    tenant_id: str
    external_user_id: str
    secret: str
    uri: str
    backup_codes: List[str]
    created_at: datetime


class TokenValidationResult(BaseModel):
    valid: bool


class BackupCodeValidationResult(BaseModel):
    valid: bool
    remaining_codes: int = Field(ge=0)


class BackupCodesRegenerated(BaseModel):
    backup_codes: List[str]
