"""
Unit test conftest.py - Component-specific fixtures.

Services are wired the way the application wires them: one session, one
codec, and a shared usage recorder.
"""

import pytest

from fortikey_core.context.access_scope import all_tenants_scope, tenant_scope
from fortikey_core.services.analytics_service import AnalyticsService
from fortikey_core.services.credential_service import CredentialService
from fortikey_core.services.tenant_service import TenantService
from fortikey_core.services.usage_service import UsageService

# ==================== SERVICE FIXTURES ====================


@pytest.fixture(scope="function")
def usage_service(db_session):
    """Usage recorder with test session."""
    return UsageService(session=db_session)


@pytest.fixture(scope="function")
def credential_service(db_session, codec, usage_service, app_config):
    """Credential service with test session and fixed-IV codec."""
    return CredentialService(db_session, codec, usage_service=usage_service, config=app_config)


@pytest.fixture(scope="function")
def analytics_service(db_session, usage_service, app_config):
    """Analytics service with test session."""
    return AnalyticsService(session=db_session, usage_service=usage_service, config=app_config)


@pytest.fixture(scope="function")
def tenant_service(db_session, usage_service):
    """Tenant service with test session."""
    return TenantService(session=db_session, usage_service=usage_service)


# ==================== SCOPE FIXTURES ====================


@pytest.fixture
def scope(sample_tenant_id):
    """Tenant scope for the standard test tenant."""
    return tenant_scope(sample_tenant_id)


@pytest.fixture
def admin_scope():
    """Privileged scope spanning all tenants."""
    return all_tenants_scope()
