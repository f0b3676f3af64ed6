"""
Unit tests for RBAC services.

Tests role assignment (scope binding, atomic replacement, revocation,
audit trail) and permission resolution (fail-closed behaviour, scope
checks, wildcards and store failures).
"""
import logging
import threading
import time
import uuid
from unittest.mock import patch

import pytest
from django.db import OperationalError, connection
from hypothesis import given, settings, HealthCheck, strategies as st

from apps.core.exceptions import (
    AccessDenied, InvalidScopeBinding, RoleNotFound, StoreUnavailable,
)
from apps.rbac.catalog import Action, Resource, Permission
from apps.rbac.models import AuditLog, RoleAssignment


@pytest.mark.django_db
class TestAssignRole:
    """Test RoleAssignmentStore.assign_role scope validation and replacement."""

    def test_system_role_without_identifiers(self, access_control):
        """Test a system role binds with no company or tenant."""
        assignment = access_control.assignments.assign_role('root', 'system_admin')

        assert assignment.role_id == 'system_admin'
        assert assignment.company_id is None
        assert assignment.tenant_id is None

    @pytest.mark.parametrize('with_company,with_tenant', [(True, False), (False, True), (True, True)])
    def test_system_role_rejects_identifiers(self, access_control, tenant, with_company, with_tenant):
        """Test a system role bound to a company or tenant is rejected."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role(
                'root', 'system_admin',
                company_id=tenant.company_id if with_company else None,
                tenant_id=tenant.id if with_tenant else None,
            )
        assert not RoleAssignment.objects.filter(principal_id='root').exists()

    def test_company_role_requires_company(self, access_control):
        """Test a company role without a company is rejected."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role('p1', 'company_admin')

    def test_company_role_rejects_tenant(self, access_control, tenant):
        """Test a company role cannot also be bound to a tenant."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role(
                'p1', 'company_admin', company_id=tenant.company_id, tenant_id=tenant.id
            )

    def test_company_role_rejects_unknown_company(self, access_control, db):
        """Test binding to a company that does not exist is rejected."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role('p1', 'company_admin', company_id=uuid.uuid4())

    @pytest.mark.parametrize('with_company,with_tenant', [(False, False), (True, False), (False, True)])
    def test_tenant_role_requires_both_identifiers(self, access_control, tenant, with_company, with_tenant):
        """Test a tenant role needs both tenant and company."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role(
                'p1', 'tenant_agent',
                company_id=tenant.company_id if with_company else None,
                tenant_id=tenant.id if with_tenant else None,
            )

    def test_tenant_must_belong_to_company(self, access_control, tenant, other_company):
        """Test a tenant bound with a company it does not belong to is rejected."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role(
                'p1', 'tenant_agent', company_id=other_company.id, tenant_id=tenant.id
            )

    def test_unknown_role(self, access_control):
        """Test assigning an undefined role raises RoleNotFound."""
        with pytest.raises(RoleNotFound):
            access_control.assignments.assign_role('p1', 'overlord')

    def test_invalid_principal_id(self, access_control):
        """Test malformed principal ids are rejected."""
        with pytest.raises(InvalidScopeBinding):
            access_control.assignments.assign_role('bad principal id', 'system_admin')

    def test_reassign_replaces_role_and_binding(self, access_control, tenant, company):
        """Test a new assignment fully replaces the previous one."""
        store = access_control.assignments
        store.assign_role('p1', 'tenant_agent', company_id=company.id, tenant_id=tenant.id)
        store.assign_role('p1', 'company_user', company_id=company.id)

        assignment = store.get_role_assignment('p1')
        assert assignment.role_id == 'company_user'
        assert assignment.company_id == company.id
        assert assignment.tenant_id is None
        assert RoleAssignment.objects.filter(principal_id='p1').count() == 1

    def test_failed_reassign_keeps_previous(self, access_control, tenant, company):
        """Test a rejected reassignment leaves the old assignment untouched."""
        store = access_control.assignments
        store.assign_role('p1', 'tenant_agent', company_id=company.id, tenant_id=tenant.id)

        with pytest.raises(InvalidScopeBinding):
            store.assign_role('p1', 'tenant_admin', company_id=company.id)

        assignment = store.get_role_assignment('p1')
        assert assignment.role_id == 'tenant_agent'
        assert assignment.tenant_id == tenant.id

    def test_assignment_is_audited(self, access_control, tenant, company):
        """Test assignments write a before/after audit entry."""
        store = access_control.assignments
        store.assign_role('p1', 'tenant_agent', company_id=company.id, tenant_id=tenant.id)
        store.assign_role('p1', 'tenant_manager', company_id=company.id, tenant_id=tenant.id, assigned_by='admin-1')

        logs = AuditLog.objects.for_principal('p1').by_action('role_assigned').order_by('id')
        assert logs.count() == 2
        assert logs[0].diff['before'] is None
        assert logs[1].diff['before']['role_id'] == 'tenant_agent'
        assert logs[1].diff['after']['role_id'] == 'tenant_manager'
        assert logs[1].actor_principal_id == 'admin-1'
        assert logs[1].tenant_id == str(tenant.id)

    def test_unchanged_assignment_not_audited_twice(self, access_control):
        """Test re-assigning the same role does not add an audit entry."""
        store = access_control.assignments
        store.assign_role('root', 'system_admin')
        store.assign_role('root', 'system_admin')

        assert AuditLog.objects.for_principal('root').count() == 1

    def test_audit_filters_chain(self, access_control, tenant, company):
        store = access_control.assignments
        store.assign_role('p1', 'tenant_agent', company_id=company.id, tenant_id=tenant.id)
        store.assign_role('p2', 'company_user', company_id=company.id)

        assert AuditLog.objects.for_tenant(tenant.id).for_principal('p1').by_action('role_assigned').count() == 1
        assert not AuditLog.objects.for_tenant(tenant.id).for_principal('p2').exists()

    def test_assignment_is_logged_at_info(self, access_control, caplog):
        """Test the assignment log line carries the binding and whether the row is new."""
        service_logger = logging.getLogger('apps.rbac.services')
        service_logger.addHandler(caplog.handler)
        caplog.set_level(logging.INFO, logger='apps.rbac.services')
        try:
            first = access_control.assignments.assign_role('root', 'system_admin')
            second = access_control.assignments.assign_role('root', 'system_admin')
        finally:
            service_logger.removeHandler(caplog.handler)

        assert first.pk == second.pk
        records = [r for r in caplog.records if r.name == 'apps.rbac.services']
        assert [r.was_created for r in records] == [True, False]
        assert records[0].role_id == 'system_admin'
        assert records[0].tenant_id is None


@pytest.mark.django_db(transaction=True)
class TestConcurrentAssignment:
    """Competing assignments for one principal."""

    def test_competing_assignments_never_mix(self, access_control, company, tenant, other_tenant):
        """Test the surviving row is exactly one of the requested role and binding triples."""
        requested = [
            ('tenant_agent', company.id, tenant.id),
            ('tenant_manager', company.id, other_tenant.id),
            ('company_user', company.id, None),
            ('system_admin', None, None),
        ]
        barrier = threading.Barrier(len(requested))
        errors = []

        def assign(role_id, company_id, tenant_id):
            try:
                barrier.wait()
                for _ in range(20):
                    try:
                        access_control.assignments.assign_role(
                            'p1', role_id, company_id=company_id, tenant_id=tenant_id
                        )
                        return
                    except StoreUnavailable:
                        # SQLite reports lock contention as an operational error
                        time.sleep(0.02)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=assign, args=triple) for triple in requested]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        rows = RoleAssignment.objects.filter(principal_id='p1')
        assert rows.count() == 1
        row = rows.get()
        assert (row.role_id, row.company_id, row.tenant_id) in requested


@pytest.mark.django_db
class TestRevokeRole:
    """Test RoleAssignmentStore.revoke_role."""

    def test_revoke_removes_assignment(self, access_control):
        """Test revocation physically removes the assignment."""
        store = access_control.assignments
        store.assign_role('root', 'system_admin')

        assert store.revoke_role('root', revoked_by='admin-1') is True
        assert store.get_role_assignment('root') is None
        assert not RoleAssignment.objects_with_deleted.filter(principal_id='root').exists()

    def test_revoke_is_idempotent(self, access_control):
        """Test revoking an unassigned principal is a no-op."""
        assert access_control.assignments.revoke_role('nobody') is False
        assert access_control.assignments.revoke_role('nobody') is False
        assert not AuditLog.objects.for_principal('nobody').exists()

    def test_revoke_is_audited(self, access_control, tenant, company):
        """Test revocation writes an audit entry with the previous state."""
        store = access_control.assignments
        store.assign_role('p1', 'tenant_agent', company_id=company.id, tenant_id=tenant.id)
        store.revoke_role('p1', revoked_by='admin-1')

        log = AuditLog.objects.for_principal('p1').by_action('role_revoked').get()
        assert log.diff['before']['role_id'] == 'tenant_agent'
        assert log.diff['after'] is None
        assert log.actor_principal_id == 'admin-1'

    def test_revoked_principal_loses_access(self, access_control):
        """Test access disappears immediately after revocation."""
        access_control.assignments.assign_role('root', 'system_admin')
        assert access_control.resolver.can('root', 'read', 'billing')

        access_control.assignments.revoke_role('root')
        assert not access_control.resolver.can('root', 'read', 'billing')


@pytest.mark.django_db
class TestAssignmentListing:
    """Test listing assignments by tenant, company and role."""

    def test_list_for_tenant_and_company(self, access_control, assign, company, tenant, other_tenant):
        """Test tenant and company listings."""
        assign('agent-1', 'tenant_agent', company=company, tenant=tenant)
        assign('agent-2', 'tenant_agent', company=company, tenant=other_tenant)
        assign('boss', 'company_admin', company=company)

        store = access_control.assignments
        assert [a.principal_id for a in store.list_for_tenant(tenant.id)] == ['agent-1']
        assert {a.principal_id for a in store.list_for_company(company.id)} == {'agent-1', 'agent-2', 'boss'}
        assert {a.principal_id for a in store.list_for_role('tenant_agent')} == {'agent-1', 'agent-2'}

    def test_list_for_malformed_id_is_empty(self, access_control):
        """Test malformed ids yield no assignments."""
        assert access_control.assignments.list_for_tenant('not-a-uuid') == []


@pytest.mark.django_db
class TestPermissionResolver:
    """Test PermissionResolver.can and friends."""

    def test_tenant_admin_example(self, access_control, assign, company, tenant, other_tenant):
        """Test the tenant_admin scenario: update in own tenant only, never delete."""
        assign('p', 'tenant_admin', company=company, tenant=tenant)
        resolver = access_control.resolver

        assert resolver.can('p', 'update', 'leads', tenant_id=tenant.id)
        assert not resolver.can('p', 'update', 'leads', tenant_id=other_tenant.id)
        assert not resolver.can('p', 'delete', 'leads', tenant_id=tenant.id)

    def test_system_admin_example(self, access_control, assign):
        """Test a system role needs no context."""
        assign('root', 'system_admin')

        assert access_control.resolver.can('root', 'read', 'billing')

    def test_system_role_ignores_context(self, access_control, assign, tenant, foreign_tenant):
        """Test system roles act in any tenant."""
        assign('root', 'system_admin')
        resolver = access_control.resolver

        assert resolver.can('root', Action.DELETE, Resource.LEADS, tenant_id=tenant.id)
        assert resolver.can('root', Action.DELETE, Resource.LEADS, tenant_id=foreign_tenant.id)

    def test_company_scope(self, access_control, assign, company, other_company, tenant):
        """Test company roles need the bound company in the context."""
        assign('boss', 'company_admin', company=company)
        resolver = access_control.resolver

        assert resolver.can('boss', 'read', 'leads', company_id=company.id, tenant_id=tenant.id)
        assert resolver.can('boss', 'read', 'leads', company_id=str(company.id))
        assert not resolver.can('boss', 'read', 'leads', company_id=other_company.id)
        assert not resolver.can('boss', 'read', 'leads')
        assert not resolver.can('boss', 'read', 'leads', tenant_id=tenant.id)

    def test_tenant_scope_checks_company_when_given(self, access_control, assign, company, other_company, tenant):
        """Test a tenant role with a mismatched company is denied."""
        assign('p', 'tenant_agent', company=company, tenant=tenant)
        resolver = access_control.resolver

        assert resolver.can('p', 'read', 'leads', company_id=company.id, tenant_id=tenant.id)
        assert not resolver.can('p', 'read', 'leads', company_id=other_company.id, tenant_id=tenant.id)
        assert not resolver.can('p', 'read', 'leads', company_id=company.id)

    def test_unknown_permission_is_false(self, access_control, assign):
        """Test unknown action or resource values are denied, never raised."""
        assign('root', 'system_admin')

        assert not access_control.resolver.can('root', 'fly', 'leads')
        assert not access_control.resolver.can('root', 'read', 'spaceships')

    def test_dangling_role_fails_closed(self, access_control):
        """Test an assignment naming an undefined role grants nothing."""
        RoleAssignment.objects.create(principal_id='ghost', role_id='retired_role')

        assert access_control.resolver.resolve('ghost') is None
        assert not access_control.resolver.can('ghost', 'read', 'leads')
        assert access_control.resolver.effective_permissions('ghost') == frozenset()

    def test_resolution_reads_current_assignment(self, access_control, assign, company, tenant, other_tenant):
        """Test decisions follow assignment changes immediately (no caching)."""
        resolver = access_control.resolver
        assign('p', 'tenant_agent', company=company, tenant=tenant)
        assert resolver.can('p', 'read', 'leads', tenant_id=tenant.id)

        assign('p', 'tenant_agent', company=company, tenant=other_tenant)
        assert not resolver.can('p', 'read', 'leads', tenant_id=tenant.id)
        assert resolver.can('p', 'read', 'leads', tenant_id=other_tenant.id)

    def test_store_unavailable_propagates(self, access_control):
        """Test infrastructure failures raise instead of granting."""
        with patch.object(RoleAssignment.objects, 'for_principal', side_effect=OperationalError('down')):
            with pytest.raises(StoreUnavailable):
                access_control.resolver.can('root', 'read', 'leads')

    def test_has_any_and_has_all(self, access_control, assign, company, tenant):
        """Test multi-permission checks."""
        assign('p', 'tenant_agent', company=company, tenant=tenant)
        resolver = access_control.resolver
        read_leads = Permission('read', 'leads')
        delete_leads = Permission('delete', 'leads')

        assert resolver.has_any('p', [read_leads, delete_leads], tenant_id=tenant.id)
        assert not resolver.has_all('p', [read_leads, delete_leads], tenant_id=tenant.id)
        assert resolver.has_all('p', [read_leads], tenant_id=tenant.id)
        assert not resolver.has_any('nobody', [read_leads], tenant_id=tenant.id)

    def test_effective_permissions_expand_wildcards(self, access_control, assign):
        """Test effective permissions include wildcard coverage."""
        assign('ops', 'platform_admin')
        permissions = access_control.resolver.effective_permissions('ops')

        assert Permission('read', 'leads') in permissions
        assert Permission('delete', 'customers') in permissions
        assert Permission('manage', 'users') in permissions
        assert Permission('manage', 'leads') not in permissions

    def test_has_tenant_access(self, access_control, assign, company, tenant, foreign_tenant):
        """Test tenant reachability for tenant and company roles."""
        assign('boss', 'company_admin', company=company)
        assign('p', 'tenant_guest', company=company, tenant=tenant)
        resolver = access_control.resolver

        assert resolver.has_tenant_access('boss', tenant.id)
        assert not resolver.has_tenant_access('boss', foreign_tenant.id)
        assert resolver.has_tenant_access('p', tenant.id)
        assert not resolver.has_tenant_access('p', foreign_tenant.id)
        assert not resolver.has_tenant_access('nobody', tenant.id)


@pytest.mark.django_db
class TestRequire:
    """Test PermissionResolver.require denial reasons and logging."""

    @pytest.mark.parametrize('principal,role,action,context,reason', [
        ('nobody', None, 'read', 'own', 'no_assignment'),
        ('p', 'tenant_guest', 'update', 'own', 'permission'),
        ('p', 'tenant_guest', 'read', 'other', 'scope'),
    ])
    def test_denial_reasons(self, access_control, assign, company, tenant, other_tenant,
                            principal, role, action, context, reason):
        """Test the reason recorded for each kind of denial."""
        if role:
            assign(principal, role, company=company, tenant=tenant)
        tenant_id = tenant.id if context == 'own' else other_tenant.id

        with patch('apps.rbac.services.SecurityLogger.log_permission_denied') as log_denied:
            with pytest.raises(AccessDenied) as exc_info:
                access_control.resolver.require(principal, action, 'tenants', tenant_id=tenant_id)

        assert exc_info.value.details['reason'] == reason
        assert log_denied.call_args.kwargs['reason'] == reason

    def test_unknown_role_reason(self, access_control):
        """Test a dangling role id is reported as unknown_role."""
        RoleAssignment.objects.create(principal_id='ghost', role_id='retired_role')

        with pytest.raises(AccessDenied) as exc_info:
            access_control.resolver.require('ghost', 'read', 'leads')
        assert exc_info.value.details['reason'] == 'unknown_role'

    def test_missing_permission_rejected_identically_in_any_context(
            self, access_control, assign, company, tenant, other_tenant):
        """Test a missing permission yields the same denial whatever the context."""
        assign('p', 'tenant_guest', company=company, tenant=tenant)
        details = []
        for tenant_id in [tenant.id, other_tenant.id, None]:
            with pytest.raises(AccessDenied) as exc_info:
                access_control.resolver.require('p', 'delete', 'leads', tenant_id=tenant_id)
            details.append(exc_info.value.details)

        assert details[0] == details[1] == details[2]

    def test_require_returns_context(self, access_control, assign, company, tenant):
        """Test a successful require returns the authorization context."""
        assign('p', 'tenant_agent', company=company, tenant=tenant)
        context = access_control.resolver.require('p', 'read', 'leads', tenant_id=tenant.id)

        assert context.principal_id == 'p'
        assert context.role.id == 'tenant_agent'
        assert context.tenant_id == str(tenant.id)
        assert context.company_id == str(company.id)


actions = st.sampled_from(list(Action) + ['fly', ''])
resources = st.sampled_from(list(Resource) + ['spaceships'])
optional_ids = st.one_of(st.none(), st.uuids())


@pytest.mark.django_db
class TestResolverProperties:
    """Property-based tests for fail-closed and deterministic resolution."""

    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(action=actions, resource=resources, company_id=optional_ids, tenant_id=optional_ids)
    def test_unassigned_principal_never_allowed(self, access_control, action, resource, company_id, tenant_id):
        """Property: a principal without an assignment is denied everything."""
        assert not access_control.resolver.can(
            'unassigned', action, resource, company_id=company_id, tenant_id=tenant_id
        )

    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        role_id=st.sampled_from(['system_admin', 'platform_admin', 'company_user', 'tenant_agent']),
        action=actions,
        resource=resources,
        use_own_tenant=st.booleans(),
    )
    def test_resolution_is_deterministic(self, access_control, tenant, other_tenant,
                                         role_id, action, resource, use_own_tenant):
        """Property: the same assignment state and arguments give the same answer."""
        role = access_control.registry.get_role(role_id)
        access_control.assignments.assign_role(
            'prop',
            role_id,
            company_id=tenant.company_id if role.requires_company else None,
            tenant_id=tenant.id if role.requires_tenant else None,
        )
        target = tenant if use_own_tenant else other_tenant
        kwargs = {'company_id': target.company_id, 'tenant_id': target.id}

        first = access_control.resolver.can('prop', action, resource, **kwargs)
        second = access_control.resolver.can('prop', action, resource, **kwargs)
        assert first == second
