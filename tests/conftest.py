"""
Test fixtures for the FortiKey core.

This module provides shared test fixtures including database setup,
configuration, the secret codec and common test data.
"""

import pytest
from sqlalchemy.orm import Session

from fortikey_core.config import AppConfig, SecurityConfig, TOTPConfig, reset_config, set_config
from fortikey_core.constants import IVMode
from fortikey_core.context.request_context import RequestContext
from fortikey_core.context.tenant_context import TenantContext
from fortikey_core.db import DatabaseConfig, DatabaseManager, import_all_models
from fortikey_core.db.db_config import Base, initialize_db
from fortikey_core.exceptions import clear_correlation_id
from fortikey_core.utils.encryption_utils import SecretCodec
from tests.fixtures.factories import TEST_ENCRYPTION_IV, TEST_ENCRYPTION_KEY, configure_factories


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    return initialize_db(db_config)


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test so each test
    starts from an empty store.
    """
    session = db_manager.get_session()

    Base.metadata.create_all(db_manager.engine)
    configure_factories(session)

    yield session

    session.rollback()
    session.close()

    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture(scope="function")
def app_config() -> AppConfig:
    """Deterministic application config, independent of the host environment."""
    config = AppConfig(
        environment="test",
        debug=False,
        security=SecurityConfig(
            encryption_key=TEST_ENCRYPTION_KEY,
            encryption_iv=TEST_ENCRYPTION_IV,
            iv_mode=IVMode.FIXED,
        ),
        totp=TOTPConfig(issuer=None),
    )
    set_config(config)
    yield config
    reset_config()


@pytest.fixture(scope="function")
def codec(app_config: AppConfig) -> SecretCodec:
    """Fixed-IV codec built from the test config."""
    return SecretCodec.from_config(app_config.security)


@pytest.fixture(autouse=True)
def clean_thread_context():
    """Make sure no tenant, request or correlation id leaks between tests."""
    yield
    TenantContext.clear_current_tenant()
    RequestContext.clear_current_request()
    clear_correlation_id()


@pytest.fixture
def sample_tenant_id() -> str:
    """Standard tenant ID for testing."""
    return "test-tenant-123"


@pytest.fixture
def other_tenant_id() -> str:
    """Second tenant for isolation tests."""
    return "other-tenant-456"
