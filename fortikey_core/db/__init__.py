"""
SQLAlchemy models and database configuration.

This module provides a common entry point for the persistence layer.
"""

from .db_base import JSON, TimestampMixin, UUIDMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_production_config,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_credential_models import TOTPCredential
from .db_usage_models import UsageEvent

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "get_production_config",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "TOTPCredential",
    "UsageEvent",
]
