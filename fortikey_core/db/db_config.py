"""
Engine and session management for the credential store.

One DatabaseManager per process owns the engine. Services either borrow a
session from their caller or open their own through get_db_manager().
"""

from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

# Declarative base shared by TOTPCredential and UsageEvent
Base: Any = declarative_base()


class DatabaseConfig(BaseModel):
    """
    Where the store lives and how connections are pooled.

    A url, when given, is used as-is. Otherwise the connection string is
    assembled from db_type and its parts.
    """

    db_type: str = "postgres"
    database: str = ""
    host: str = ""
    port: str = "5432"
    username: str = ""
    password: str = Field(default="", repr=False)
    url: Optional[str] = Field(default=None, repr=False)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    development_mode: bool = False

    @property
    def is_sqlite(self) -> bool:
        if self.url:
            return self.url.startswith("sqlite")
        return self.db_type.lower() == "sqlite"

    def get_connection_string(self) -> str:
        """
        Raises:
            ValidationError: MISSING_REQUIRED for incomplete Postgres settings,
                INVALID_FORMAT for an unknown db_type
        """
        if self.url:
            return self.url

        kind = self.db_type.lower()
        if kind == "sqlite":
            return f"sqlite:///{self.database}"
        if kind != "postgres":
            raise ValidationError(
                f"Unsupported database type: {self.db_type}",
                field="db_type",
                error_code=ErrorCode.INVALID_FORMAT,
                value=self.db_type,
            )

        missing = [
            name
            for name in ("host", "database", "username", "password")
            if not getattr(self, name)
        ]
        if missing:
            raise ValidationError(
                "Missing required Postgres configuration parameters",
                field="database_config",
                error_code=ErrorCode.MISSING_REQUIRED,
                missing=missing,
            )
        return f"postgresql://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"


class DatabaseManager:
    """Owns the engine, a session factory and a thread-local session registry."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = self._build_engine()
        self.session_factory = sessionmaker(bind=self.engine)
        self.scoped_session = scoped_session(self.session_factory)

    def _build_engine(self) -> Engine:
        url = self.config.get_connection_string()
        if self.config.is_sqlite:
            # Worker threads share the file; SQLite's own thread check would refuse them
            return create_engine(
                url, echo=self.config.echo, connect_args={"check_same_thread": False}
            )
        return create_engine(
            url,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop every table. Refused unless the config is in development mode."""
        if not self.config.development_mode:
            raise ServiceError(
                "Cannot drop tables: not in development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
            )
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        """The current thread's session."""
        return self.scoped_session()

    def new_session(self) -> Session:
        """A session outside the thread-local registry; the caller closes it."""
        return self.session_factory()

    def close(self) -> None:
        self.scoped_session.remove()
        self.engine.dispose()


def get_production_config() -> DatabaseConfig:
    """DatabaseConfig built from AppConfig.database (DATABASE_URL and pool settings)."""
    from ..config import get_config

    settings = get_config().database
    return DatabaseConfig(
        url=settings.connection_string,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        echo=settings.echo,
    )


def import_all_models() -> None:
    """Register both models on Base.metadata and configure their mappers."""
    from sqlalchemy.orm import configure_mappers

    from .db_credential_models import TOTPCredential  # noqa: F401
    from .db_usage_models import UsageEvent  # noqa: F401

    configure_mappers()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Raises:
        ServiceError: CONFIGURATION_ERROR if initialize_db() has not run
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    """Replace the process-wide manager, e.g. with a test database."""
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Create the process-wide manager and the store's tables.

    Args:
        config: Connection settings; get_production_config() when omitted
    """
    global _db_manager

    manager = DatabaseManager(config or get_production_config())
    get_logger().info("Initializing credential store", extra={"sqlite": manager.config.is_sqlite})
    import_all_models()
    manager.create_tables()

    _db_manager = manager
    return manager


def close_db() -> None:
    """Dispose of the process-wide manager's engine and forget the manager."""
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
