"""
TOTP credential model.

Just the data structure; encryption and validation live in the service layer.
"""

from sqlalchemy import Column, Index, Integer, String, Text

from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class TOTPCredential(Base, UUIDMixin, TimestampMixin):
    """Encrypted TOTP secret and backup codes for one external user of a tenant."""

    __tablename__ = "totp_credentials"

    tenant_id = Column(String(100), nullable=False, index=True)
    external_user_id = Column(String(255), nullable=False)

    # Ciphertext only; written once at creation
    secret = Column(Text, nullable=False)
    backup_codes = Column(JSON, nullable=False, default=list)

    # Bumped on every backup-code write, checked by the compare-and-swap update
    version = Column(Integer, nullable=False, default=1)

    context = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_totp_credential_lookup", "tenant_id", "external_user_id", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<TOTPCredential(id={self.id}, tenant_id={self.tenant_id}, "
            f"external_user_id={self.external_user_id})>"
        )
