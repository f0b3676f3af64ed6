"""
Tests for the tenant-scoped gateway.

Covers authorization before I/O, tenant filtering with overlapping record
ids, the isolation re-check against a misbehaving store, payload scope
checks and the call state machine.
"""
import uuid
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import given, settings, HealthCheck, strategies as st

from apps.core.exceptions import AccessDenied, CrossTenantViolation, RecordNotFound
from apps.records.documents import DocumentStore, MemoryDocumentStore
from apps.records.gateway import CallState, GatewayCall, build_gateway


class LeakyDocumentStore(MemoryDocumentStore):
    """A broken store that ignores the tenant filter."""

    def query(self, collection, **equals):
        equals.pop('tenant_id', None)
        return super().query(collection, **equals)


class MisroutingDocumentStore(MemoryDocumentStore):
    """A broken store that writes every new document into a fixed tenant."""

    def __init__(self, tenant_id):
        super().__init__()
        self.tenant_id = tenant_id

    def create(self, collection, data):
        return super().create(collection, {**data, 'tenant_id': self.tenant_id})


def seed(store, tenant, record_id, **fields):
    """Put a record straight into the store, bypassing the gateway."""
    return store.create('leads', {
        'id': record_id,
        'tenant_id': str(tenant.id),
        'company_id': str(tenant.company_id),
        **fields,
    })


@pytest.fixture
def agents(assign, company, tenant, other_tenant):
    """One tenant_agent per tenant."""
    assign('agent-1', 'tenant_agent', company=company, tenant=tenant)
    assign('agent-2', 'tenant_agent', company=company, tenant=other_tenant)


@pytest.mark.django_db
class TestAuthorization:
    """Authorization happens before any storage access."""

    def test_denied_before_io(self, access_control, assign, company, tenant, other_tenant):
        """Test a denied call never reaches the document store."""
        assign('agent-1', 'tenant_agent', company=company, tenant=tenant)
        store = MagicMock(spec=DocumentStore)
        gateway = build_gateway(access=access_control, documents=store)

        with pytest.raises(AccessDenied):
            gateway.read_many('agent-1', 'leads', other_tenant.id)
        with pytest.raises(AccessDenied):
            gateway.write('agent-1', 'leads', {'name': 'x'}, other_tenant.id)
        with pytest.raises(AccessDenied):
            gateway.delete('agent-1', 'leads', 'lead-1', tenant.id)

        assert store.method_calls == []

    def test_missing_tenant(self, gateway, agents):
        with pytest.raises(AccessDenied) as exc_info:
            gateway.read_many('agent-1', 'leads', None)

        assert exc_info.value.details['reason'] == 'missing_tenant'

    def test_unknown_tenant_denied(self, access_control, assign):
        """Test a system role cannot create records in a tenant that does not exist."""
        assign('root', 'system_admin')
        store = MagicMock(spec=DocumentStore)
        gateway = build_gateway(access=access_control, documents=store)

        with pytest.raises(AccessDenied) as exc_info:
            gateway.write('root', 'leads', {'name': 'x'}, uuid.uuid4())

        assert exc_info.value.details['reason'] == 'missing_tenant'
        assert store.method_calls == []

    def test_deleted_tenant_denied(self, gateway, memory_store, agents, tenant):
        """Test a tenant-bound principal loses access once its tenant is deleted."""
        seed(memory_store, tenant, 'lead-1')
        assert gateway.read_many('agent-1', 'leads', tenant.id)

        tenant.delete()

        with pytest.raises(AccessDenied) as exc_info:
            gateway.read_many('agent-1', 'leads', tenant.id)
        assert exc_info.value.details['reason'] == 'missing_tenant'

    def test_unknown_resource_denied(self, gateway, assign, tenant):
        """Test an unknown collection is refused, even for a system role."""
        assign('root', 'system_admin')

        with pytest.raises(AccessDenied):
            gateway.read_many('root', 'spaceships', tenant.id)

    def test_tenant_admin_cannot_delete(self, gateway, memory_store, assign, company, tenant):
        """Test tenant_admin may update but not delete leads."""
        assign('admin', 'tenant_admin', company=company, tenant=tenant)
        seed(memory_store, tenant, 'lead-1')

        gateway.write('admin', 'leads', {'id': 'lead-1', 'stage': 'won'}, tenant.id)
        with pytest.raises(AccessDenied):
            gateway.delete('admin', 'leads', 'lead-1', tenant.id)

    def test_company_role_reaches_company_tenants(self, gateway, memory_store, assign, company,
                                                  tenant, other_tenant, foreign_tenant):
        assign('boss', 'company_admin', company=company)
        seed(memory_store, tenant, 'lead-1')
        seed(memory_store, other_tenant, 'lead-2')

        assert [r['id'] for r in gateway.read_many('boss', 'leads', tenant.id)] == ['lead-1']
        assert [r['id'] for r in gateway.read_many('boss', 'leads', other_tenant.id)] == ['lead-2']
        with pytest.raises(AccessDenied):
            gateway.read_many('boss', 'leads', foreign_tenant.id)


@pytest.mark.django_db
class TestTenantFiltering:
    """Reads and writes stay inside the tenant."""

    def test_overlapping_ids(self, gateway, memory_store, agents, tenant, other_tenant):
        """Test the same record id in two tenants resolves to each tenant's own record."""
        seed(memory_store, tenant, 'lead-1', name='Tenant one lead')
        seed(memory_store, other_tenant, 'lead-1', name='Tenant two lead')

        assert gateway.read_one('agent-1', 'leads', 'lead-1', tenant.id)['name'] == 'Tenant one lead'
        assert gateway.read_one('agent-2', 'leads', 'lead-1', other_tenant.id)['name'] == 'Tenant two lead'
        assert len(gateway.read_many('agent-1', 'leads', tenant.id)) == 1

    def test_read_other_tenants_id(self, gateway, memory_store, agents, tenant, other_tenant):
        seed(memory_store, tenant, 'lead-1')

        with pytest.raises(RecordNotFound):
            gateway.read_one('agent-2', 'leads', 'lead-1', other_tenant.id)

    def test_create_stamps_scope(self, gateway, agents, company, tenant):
        """Test created records get a server id plus the tenant and company."""
        record = gateway.write('agent-1', 'leads', {'name': 'Ada'}, tenant.id)

        assert record['id']
        assert record['tenant_id'] == str(tenant.id)
        assert record['company_id'] == str(company.id)
        assert gateway.read_one('agent-1', 'leads', record['id'], tenant.id)['name'] == 'Ada'

    def test_update_merges_existing(self, gateway, memory_store, agents, tenant):
        seed(memory_store, tenant, 'lead-1', name='Ada', stage='new')

        record = gateway.write('agent-1', 'leads', {'id': 'lead-1', 'stage': 'won'}, tenant.id)

        assert record['name'] == 'Ada'
        assert record['stage'] == 'won'

    def test_update_of_other_tenants_record(self, gateway, memory_store, agents, tenant, other_tenant):
        """Test an update never creates or touches a record outside the tenant."""
        original = seed(memory_store, tenant, 'lead-1', stage='new')

        with pytest.raises(RecordNotFound):
            gateway.write('agent-2', 'leads', {'id': 'lead-1', 'stage': 'lost'}, other_tenant.id)

        assert memory_store.get('leads', original.key).data['stage'] == 'new'
        assert len(memory_store.list('leads')) == 1

    def test_delete_of_other_tenants_record(self, gateway, memory_store, assign, company, tenant, other_tenant):
        """Test a delete scoped to one tenant never removes another tenant's record."""
        assign('boss', 'company_admin', company=company)
        original = seed(memory_store, tenant, 'lead-1')

        with pytest.raises(RecordNotFound):
            gateway.delete('boss', 'leads', 'lead-1', other_tenant.id)

        assert memory_store.get('leads', original.key) is not None

    def test_delete(self, gateway, memory_store, assign, company, tenant):
        assign('boss', 'company_admin', company=company)
        seed(memory_store, tenant, 'lead-1')

        gateway.delete('boss', 'leads', 'lead-1', tenant.id)

        assert memory_store.list('leads') == []


@pytest.mark.django_db
class TestPayloadScope:
    """Write payloads may not name another tenant or company."""

    def test_foreign_tenant_in_payload(self, gateway, memory_store, agents, tenant, other_tenant):
        with patch('apps.records.gateway.SecurityLogger.log_suspicious_activity') as log_suspicious:
            with pytest.raises(AccessDenied) as exc_info:
                gateway.write('agent-1', 'leads', {'name': 'x', 'tenant_id': str(other_tenant.id)}, tenant.id)

        assert exc_info.value.details['reason'] == 'payload_scope_mismatch'
        assert log_suspicious.call_args.kwargs['activity_type'] == 'payload_scope_mismatch'
        assert memory_store.list('leads') == []

    def test_foreign_company_in_payload(self, gateway, agents, tenant, other_company):
        with pytest.raises(AccessDenied) as exc_info:
            gateway.write('agent-1', 'leads', {'name': 'x', 'company_id': str(other_company.id)}, tenant.id)

        assert exc_info.value.details['field'] == 'company_id'

    def test_matching_scope_in_payload(self, gateway, agents, company, tenant):
        """Test a payload that repeats the call's own scope is accepted."""
        record = gateway.write(
            'agent-1', 'leads',
            {'name': 'x', 'tenant_id': str(tenant.id), 'company_id': str(company.id)},
            tenant.id,
        )

        assert record['tenant_id'] == str(tenant.id)


@pytest.mark.django_db
class TestIsolationVerification:
    """The gateway re-checks everything the store hands back."""

    def test_leaky_store_read_many(self, access_control, agents, tenant, other_tenant):
        """Test a store ignoring the tenant filter is caught on read."""
        store = LeakyDocumentStore()
        seed(store, tenant, 'lead-1')
        seed(store, other_tenant, 'lead-2')
        gateway = build_gateway(access=access_control, documents=store)

        with patch('apps.records.gateway.SecurityLogger.log_cross_tenant_violation') as log_violation:
            with pytest.raises(CrossTenantViolation) as exc_info:
                gateway.read_many('agent-1', 'leads', tenant.id)

        assert exc_info.value.details['expected_tenant_id'] == str(tenant.id)
        assert exc_info.value.details['observed_tenant_id'] == str(other_tenant.id)
        log_violation.assert_called_once()

    def test_leaky_store_read_one(self, access_control, agents, tenant, other_tenant):
        store = LeakyDocumentStore()
        seed(store, other_tenant, 'lead-2')
        gateway = build_gateway(access=access_control, documents=store)

        with pytest.raises(CrossTenantViolation):
            gateway.read_one('agent-1', 'leads', 'lead-2', tenant.id)

    def test_leaky_store_update(self, access_control, agents, tenant, other_tenant):
        """Test a leaky store cannot trick an update into touching another tenant."""
        store = LeakyDocumentStore()
        original = seed(store, other_tenant, 'lead-2', stage='new')
        gateway = build_gateway(access=access_control, documents=store)

        with pytest.raises(CrossTenantViolation):
            gateway.write('agent-1', 'leads', {'id': 'lead-2', 'stage': 'lost'}, tenant.id)

        assert store.get('leads', original.key).data['stage'] == 'new'

    def test_misrouted_write(self, access_control, agents, tenant, other_tenant):
        """Test a write that lands in another tenant is reported."""
        gateway = build_gateway(
            access=access_control,
            documents=MisroutingDocumentStore(str(other_tenant.id)),
        )

        with pytest.raises(CrossTenantViolation):
            gateway.write('agent-1', 'leads', {'name': 'x'}, tenant.id)


class TestGatewayCall:
    """The per-call state machine."""

    def make_call(self):
        return GatewayCall(operation='read_many', principal_id='p', resource='leads', tenant_id='t1')

    def test_successful_path(self):
        call = self.make_call()
        for state in [CallState.AUTHORIZATION_CHECKED, CallState.AUTHORIZED, CallState.DATA_FETCHED,
                      CallState.ISOLATION_VERIFIED, CallState.COMPLETED]:
            call.advance(state)

        assert call.is_terminal
        assert call.history[0] == CallState.PENDING
        assert call.history[-1] == CallState.COMPLETED

    def test_update_verifies_twice(self):
        call = self.make_call()
        for state in [CallState.AUTHORIZATION_CHECKED, CallState.AUTHORIZED, CallState.DATA_FETCHED,
                      CallState.ISOLATION_VERIFIED, CallState.DATA_FETCHED, CallState.ISOLATION_VERIFIED]:
            call.advance(state)

        assert call.state == CallState.ISOLATION_VERIFIED

    @pytest.mark.parametrize('path', [
        [CallState.AUTHORIZED],
        [CallState.AUTHORIZATION_CHECKED, CallState.DATA_FETCHED],
        [CallState.AUTHORIZATION_CHECKED, CallState.DENIED, CallState.AUTHORIZED],
        [CallState.AUTHORIZATION_CHECKED, CallState.AUTHORIZED, CallState.DATA_FETCHED,
         CallState.ISOLATION_VIOLATED, CallState.COMPLETED],
    ])
    def test_illegal_transitions(self, path):
        call = self.make_call()
        with pytest.raises(RuntimeError):
            for state in path:
                call.advance(state)


@pytest.mark.django_db
class TestIsolationProperties:
    """Property-based isolation checks over random record layouts."""

    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(layout=st.lists(
        st.tuples(st.sampled_from([0, 1]), st.sampled_from(['a', 'b', 'c', 'd'])),
        max_size=12,
        unique=True,
    ))
    def test_tenants_only_see_their_own_records(self, access_control, agents, tenant, other_tenant, layout):
        """Property: whatever ids the tenants share, each sees exactly its own records."""
        tenants = [tenant, other_tenant]
        principals = ['agent-1', 'agent-2']
        store = MemoryDocumentStore()
        gateway = build_gateway(access=access_control, documents=store)
        for index, record_id in layout:
            seed(store, tenants[index], record_id, owner=index)

        for index, current in enumerate(tenants):
            own_ids = {record_id for owner, record_id in layout if owner == index}
            records = gateway.read_many(principals[index], 'leads', current.id)

            assert {r['id'] for r in records} == own_ids
            assert all(r['owner'] == index for r in records)
            for record_id in 'abcd':
                if record_id in own_ids:
                    assert gateway.read_one(principals[index], 'leads', record_id, current.id)['owner'] == index
                else:
                    with pytest.raises(RecordNotFound):
                        gateway.read_one(principals[index], 'leads', record_id, current.id)
