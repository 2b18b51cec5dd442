"""Backup code generation and normalization."""

import secrets
import string
from typing import List, Optional

from ..constants import Limits

BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_backup_codes(
    count: int = Limits.BACKUP_CODE_COUNT, length: int = Limits.BACKUP_CODE_LENGTH
) -> List[str]:
    """
    Generate single-use backup codes.

    Args:
        count: Number of codes
        length: Characters per code

    Returns:
        List of distinct uppercase alphanumeric codes
    """
    codes: List[str] = []
    while len(codes) < count:
        code = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
        if code not in codes:
            codes.append(code)
    return codes


def normalize_backup_code(code: Optional[str]) -> str:
    """Strip whitespace and uppercase so user input compares against stored codes."""
    if code is None:
        return ""
    return "".join(str(code).split()).upper()
