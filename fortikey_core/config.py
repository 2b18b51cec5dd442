"""
Settings for the FortiKey core, read from the environment.

Each section is a Pydantic model whose defaults are pulled from environment
variables when the model is built, so the key material and pool sizes are
fixed for the life of the process once get_config() has run.
"""

import os
from typing import Callable, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, IVMode, Limits, LogLevel, TOTPDefaults


def _env(variable: EnvironmentVariable, default: Optional[str] = None) -> Callable[[], Optional[str]]:
    return lambda: os.getenv(variable.value, default)


def _env_flag(variable: EnvironmentVariable) -> Callable[[], bool]:
    return lambda: os.getenv(variable.value, "false").strip().lower() in ("1", "true", "yes")


class DatabaseConfig(BaseModel):
    """Where credentials and usage events are stored."""

    connection_string: str = Field(
        default_factory=_env(EnvironmentVariable.DATABASE_URL, "sqlite:///./fortikey.db")
    )
    pool_size: int = Field(default=5, gt=0)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, gt=0, description="Seconds to wait for a connection")
    echo: bool = False


class LoggingConfig(BaseModel):
    level: str = Field(default_factory=_env(EnvironmentVariable.LOG_LEVEL, LogLevel.INFO.value))

    @field_validator("level")
    def check_level(cls, v: str) -> str:
        names = {level.value for level in LogLevel}
        if v.upper() not in names:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(names)}")
        return v.upper()


class SecurityConfig(BaseModel):
    """Encryption settings for secrets and backup codes at rest."""

    encryption_key: Optional[str] = Field(
        default_factory=_env(EnvironmentVariable.ENCRYPTION_KEY),
        description="Symmetric key, 32 bytes UTF-8",
    )
    encryption_iv: Optional[str] = Field(
        default_factory=_env(EnvironmentVariable.ENCRYPTION_IV),
        description="Initialization vector, 16 bytes UTF-8",
    )
    iv_mode: IVMode = Field(
        default_factory=_env(EnvironmentVariable.ENCRYPTION_IV_MODE, IVMode.FIXED.value),
        validate_default=True,
        description="fixed reproduces stored ciphertext; random uses a fresh IV per value",
    )


class TOTPConfig(BaseModel):
    """TOTP and backup-code parameters."""

    issuer: Optional[str] = Field(
        default_factory=_env(EnvironmentVariable.TOTP_ISSUER),
        description="Issuer override; defaults to the tenant label",
    )
    drift_steps: int = Field(default=TOTPDefaults.DRIFT_STEPS, ge=0, le=10)
    backup_code_count: int = Field(default=Limits.BACKUP_CODE_COUNT, gt=0, le=50)
    backup_code_length: int = Field(default=Limits.BACKUP_CODE_LENGTH, ge=6, le=32)


class AnalyticsConfig(BaseModel):
    """Defaults for analytics lookback windows."""

    default_period_days: int = Field(default=Limits.DEFAULT_PERIOD_DAYS, gt=0)
    default_time_comparison_days: int = Field(
        default=Limits.DEFAULT_TIME_COMPARISON_DAYS, gt=0
    )
    max_period_days: int = Field(default=Limits.MAX_PERIOD_DAYS, gt=0)


class AppConfig(BaseModel):
    """All settings sections plus the deployment environment name."""

    environment: str = Field(default_factory=_env(EnvironmentVariable.APP_ENV, "development"))
    debug: bool = Field(default_factory=_env_flag(EnvironmentVariable.DEBUG))

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    totp: TOTPConfig = Field(default_factory=TOTPConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls()


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """The process-wide settings, read from the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide settings, e.g. with test key material."""
    global _config
    _config = config


def reset_config() -> None:
    """Drop the cached settings; the next get_config() re-reads the environment."""
    global _config
    _config = None
