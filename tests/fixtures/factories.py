"""
Factory Boy factories for generating consistent test data.

Credentials are stored encrypted with the test key, exactly as the
services store them.
"""

from datetime import timedelta

import factory
import factory.fuzzy

from fortikey_core.constants import EventType
from fortikey_core.db import TOTPCredential, UsageEvent, utc_now
from fortikey_core.utils.backup_code_utils import generate_backup_codes
from fortikey_core.utils.encryption_utils import SecretCodec
from fortikey_core.utils.totp_utils import generate_totp_secret

TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
TEST_ENCRYPTION_IV = "abcdef0123456789"

_codec = SecretCodec(TEST_ENCRYPTION_KEY, TEST_ENCRYPTION_IV)

DESKTOP_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_SAFARI_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


# ==================== BASE FACTORIES ====================


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base factory with common patterns."""

    class Meta:
        abstract = True
        sqlalchemy_session_persistence = "commit"


# ==================== CREDENTIAL FACTORIES ====================


class TOTPCredentialFactory(BaseFactory):
    """Stored credential with an encrypted secret and backup codes."""

    class Meta:
        model = TOTPCredential
        exclude = ("plain_secret", "plain_backup_codes")

    tenant_id = "test-tenant-123"
    external_user_id = factory.Sequence(lambda n: f"user_{n}@example.com")
    plain_secret = factory.LazyAttribute(
        lambda o: generate_totp_secret("Test Co", o.external_user_id).secret
    )
    plain_backup_codes = factory.LazyFunction(generate_backup_codes)
    secret = factory.LazyAttribute(lambda o: _codec.encrypt(o.plain_secret))
    backup_codes = factory.LazyAttribute(lambda o: _codec.encrypt_many(o.plain_backup_codes))
    version = 1
    context = factory.LazyFunction(lambda: {"company": "Test Co", "created_by": None})


# ==================== USAGE EVENT FACTORIES ====================


class UsageEventFactory(BaseFactory):
    """Recorded usage event; defaults to a successful TOTP validation from a desktop."""

    class Meta:
        model = UsageEvent

    tenant_id = "test-tenant-123"
    external_user_id = factory.Sequence(lambda n: f"user_{n}@example.com")
    event_type = EventType.TOTP_VALIDATION.value
    success = True
    details = None
    ip_address = factory.Faker("ipv4")
    user_agent = DESKTOP_CHROME_UA
    timestamp = factory.LazyFunction(lambda: utc_now() - timedelta(minutes=5))


class FailedValidationFactory(UsageEventFactory):
    """Rejected TOTP validation."""

    success = False


class BackupCodeUsedFactory(UsageEventFactory):
    """Successful backup-code consumption."""

    event_type = EventType.BACKUP_CODE_USED.value


# ==================== FACTORY CONFIGURATION ====================


def configure_factories(session):
    """Configure all factories to use the provided session."""
    factories = [
        TOTPCredentialFactory,
        UsageEventFactory,
        FailedValidationFactory,
        BackupCodeUsedFactory,
    ]

    for factory_class in factories:
        factory_class._meta.sqlalchemy_session = session
