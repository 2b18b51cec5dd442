"""
TOTP secret generation and token validation.

Tokens are SHA1, 6 digits, 30-second steps, matching what authenticator apps
default to.
"""

import binascii
import hashlib
from datetime import datetime
from typing import Optional, Union

import pyotp
from pydantic import BaseModel, ConfigDict

from ..constants import TOTPDefaults
from ..exceptions import ErrorCode, ValidationError

ForTime = Optional[Union[datetime, int]]


class TOTPSecretBundle(BaseModel):
    """A freshly generated secret and its provisioning URI."""

    secret: str
    uri: str

    model_config = ConfigDict(frozen=True)


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(
        secret,
        digits=TOTPDefaults.DIGITS,
        interval=TOTPDefaults.INTERVAL_SECONDS,
        digest=hashlib.sha1,
    )


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(
            f"{field} is required",
            field=field,
            error_code=ErrorCode.MISSING_REQUIRED,
        )
    return str(value)


def generate_totp_secret(
    tenant_label: str, external_user_id: str, issuer: Optional[str] = None
) -> TOTPSecretBundle:
    """
    Generate a new base32 secret and its otpauth:// provisioning URI.

    Args:
        tenant_label: Display name of the tenant, used as issuer by default
        external_user_id: Tenant-controlled user identifier, used as account name
        issuer: Optional issuer override

    Returns:
        TOTPSecretBundle with the plaintext secret and URI

    Raises:
        ValidationError: If tenant_label or external_user_id is empty
    """
    label = _require(tenant_label, "tenant_label")
    account = _require(external_user_id, "external_user_id")

    secret = pyotp.random_base32(TOTPDefaults.SECRET_LENGTH)
    uri = _totp(secret).provisioning_uri(name=account, issuer_name=issuer or label)
    return TOTPSecretBundle(secret=secret, uri=uri)


def generate_totp_token(secret: str, for_time: ForTime = None) -> str:
    """Current (or for_time) token for a secret."""
    totp = _totp(secret)
    if for_time is None:
        return totp.now()
    return totp.at(for_time)


def normalize_token(token: Optional[str]) -> str:
    if token is None:
        return ""
    return str(token).replace(" ", "").replace("-", "").strip()


def validate_totp_token(
    secret: str,
    token: Optional[str],
    drift_steps: int = TOTPDefaults.DRIFT_STEPS,
    for_time: ForTime = None,
) -> bool:
    """
    Check a token against a secret, tolerating clock drift.

    Args:
        secret: Plaintext base32 secret
        token: Code entered by the user; spaces and dashes are ignored
        drift_steps: Adjacent 30-second steps accepted on each side
        for_time: Evaluate at this time instead of now

    Returns:
        True if the token matches a step within the window

    Raises:
        ValidationError: If the secret is not valid base32
    """
    candidate = normalize_token(token)
    if len(candidate) != TOTPDefaults.DIGITS or not candidate.isdigit():
        return False

    totp = _totp(secret)
    try:
        return totp.verify(candidate, for_time=for_time, valid_window=drift_steps)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(
            "Stored TOTP secret is not valid base32",
            field="secret",
            error_code=ErrorCode.INVALID_FORMAT,
            cause=e,
        )
