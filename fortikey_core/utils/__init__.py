"""Utility modules for the FortiKey core."""

from .backup_code_utils import generate_backup_codes, normalize_backup_code

# Store helpers
from .crud_helpers import create_record, delete_record, delete_records, list_records
from .encryption_utils import SecretCodec

# Logging utilities
from .logger import ContextAwareLogger, configure_logging, get_logger
from .totp_utils import (
    TOTPSecretBundle,
    generate_totp_secret,
    generate_totp_token,
    validate_totp_token,
)
from .user_agent_utils import classify_browser, classify_device, classify_user_agent

__all__ = [
    # Backup codes
    "generate_backup_codes",
    "normalize_backup_code",
    # Store helpers
    "create_record",
    "delete_record",
    "delete_records",
    "list_records",
    # Encryption
    "SecretCodec",
    # Logging utilities
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
    # TOTP
    "TOTPSecretBundle",
    "generate_totp_secret",
    "generate_totp_token",
    "validate_totp_token",
    # User agents
    "classify_browser",
    "classify_device",
    "classify_user_agent",
]
