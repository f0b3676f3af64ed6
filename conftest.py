"""
Pytest configuration and fixtures.
"""
import pytest
from django.core.management import call_command


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database (apps ship no migrations, tables come from syncdb)."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def company(db):
    """Create a test company."""
    from apps.tenants.models import Company
    return Company.objects.create(name='Acme', slug='acme')


@pytest.fixture
def other_company(db):
    """Create another company for cross-company tests."""
    from apps.tenants.models import Company
    return Company.objects.create(name='Globex', slug='globex')


@pytest.fixture
def tenant(db, company):
    """Create a test tenant."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        company=company,
        name='Test Tenant',
        slug='test-tenant',
        is_active=True
    )


@pytest.fixture
def other_tenant(db, company):
    """Create another tenant of the same company for isolation tests."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        company=company,
        name='Other Tenant',
        slug='other-tenant',
        is_active=True
    )


@pytest.fixture
def foreign_tenant(db, other_company):
    """Create a tenant of a different company."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        company=other_company,
        name='Foreign Tenant',
        slug='foreign-tenant',
        is_active=True
    )


@pytest.fixture
def access_control(db):
    """Access-control services over the built-in role table."""
    from apps.rbac.roles import RoleRegistry
    from apps.rbac.services import build_access_control
    return build_access_control(RoleRegistry())


@pytest.fixture
def assign(access_control):
    """Shortcut: assign(principal_id, role_id, company=None, tenant=None)."""
    def _assign(principal_id, role_id, company=None, tenant=None):
        return access_control.assignments.assign_role(
            principal_id,
            role_id,
            company_id=company.id if company else None,
            tenant_id=tenant.id if tenant else None,
        )
    return _assign


@pytest.fixture
def memory_store():
    """Empty in-memory document store."""
    from apps.records.documents import MemoryDocumentStore
    return MemoryDocumentStore()


@pytest.fixture
def gateway(access_control, memory_store):
    """Gateway over the in-memory store and the Tenant model directory."""
    from apps.records.gateway import build_gateway
    return build_gateway(access=access_control, documents=memory_store)
