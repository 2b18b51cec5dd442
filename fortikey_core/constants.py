"""
Constants and enums for the FortiKey core.

This module centralizes the magic strings and thresholds used throughout
the credential and analytics layers to ensure consistency.
"""

from enum import Enum


class EventType(str, Enum):
    """Usage event types recorded by the core and its collaborators."""

    TOTP_SETUP = "totp_setup"
    TOTP_VALIDATION = "totp_validation"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"
    API_KEY_GENERATED = "api_key_generated"
    API_KEY_DELETED = "api_key_deleted"
    REGISTRATION = "registration"
    LOGIN = "login"
    PROFILE_ACCESS = "profile_access"
    PROFILE_UPDATE = "profile_update"
    PROFILE_DELETE = "profile_delete"
    TOTP_ACCESS = "totp_access"
    TOTP_UPDATE = "totp_update"
    TOTP_DELETE = "totp_delete"
    ANALYTICS_ACCESS = "analytics_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


# Events that count as an authentication attempt by an external user
AUTHENTICATION_EVENT_TYPES = (EventType.TOTP_VALIDATION, EventType.BACKUP_CODE_USED)

TOTP_EVENT_TYPES = (
    EventType.TOTP_SETUP,
    EventType.TOTP_VALIDATION,
    EventType.BACKUP_CODE_USED,
)


class AnalyticsKind(str, Enum):
    """Rollups offered by the analytics aggregator."""

    BUSINESS_STATS = "business_stats"
    TOTP_STATS = "totp_stats"
    FAILURE_ANALYTICS = "failure_analytics"
    USER_STATS = "user_stats"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DEVICE_BREAKDOWN = "device_breakdown"
    BACKUP_CODE_USAGE = "backup_code_usage"
    TIME_COMPARISONS = "time_comparisons"


class IVMode(str, Enum):
    """How the secret codec chooses initialization vectors."""

    FIXED = "fixed"
    RANDOM = "random"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    ENCRYPTION_KEY = "ENCRYPTION_KEY"
    ENCRYPTION_IV = "ENCRYPTION_IV"
    ENCRYPTION_IV_MODE = "ENCRYPTION_IV_MODE"
    TOTP_ISSUER = "TOTP_ISSUER"


class LogContextKey(str, Enum):
    """Standard keys for logging context."""

    OPERATION_ID = "operation_id"
    CORRELATION_ID = "correlation_id"
    TENANT_ID = "tenant_id"
    EXTERNAL_USER_ID = "external_user_id"
    CREDENTIAL_ID = "credential_id"
    DURATION_MS = "duration_ms"
    STATUS = "status"
    ERROR_CODE = "error_code"
    SOURCE_MODULE = "source_module"
    OPERATION = "operation"


class Limits:
    """System limits and thresholds."""

    BACKUP_CODE_COUNT = 8
    BACKUP_CODE_LENGTH = 10
    BACKUP_CODE_CAS_RETRIES = 3
    DEFAULT_PAGE_SIZE = 100
    MAX_PAGE_SIZE = 500
    DEFAULT_PERIOD_DAYS = 30
    DEFAULT_TIME_COMPARISON_DAYS = 7
    MAX_PERIOD_DAYS = 365


class TOTPDefaults:
    """TOTP parameters shared with standard authenticator apps."""

    DIGITS = 6
    INTERVAL_SECONDS = 30
    ALGORITHM = "sha1"
    DRIFT_STEPS = 1
    SECRET_LENGTH = 32  # base32 characters, 160 bits


class SuspiciousActivityThresholds:
    """Fixed heuristics for flagging an external user; any one is enough."""

    MAX_FAILED_ATTEMPTS = 5
    MAX_DISTINCT_IPS = 3
    MAX_FAILURE_RATE = 0.4
    RECENT_EVENTS_LIMIT = 20


class BackupCodeUsageThresholds:
    """Thresholds for the frequent backup-code users report."""

    MIN_USES = 2
    TOP_USERS = 10


class BusinessHours:
    """Business hours window, start inclusive and end exclusive (UTC hours)."""

    START_HOUR = 9
    END_HOUR = 17
