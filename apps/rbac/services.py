"""
RBAC services.

Implements:
- RoleAssignmentStore: durable principal -> (role, company, tenant) bindings
- PermissionResolver: fail-closed permission and scope decisions
- AccessControl: the bundle wired together by build_access_control()
"""
import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple

from django.db import transaction

from apps.core.exceptions import AccessDenied, InvalidScopeBinding, store_errors
from apps.core.logging import SecurityLogger
from apps.core.validators import InputValidator
from apps.rbac.catalog import Permission
from apps.rbac.models import AuditLog, RoleAssignment
from apps.rbac.roles import Role, RoleRegistry, Scope, default_registry
from apps.tenants.models import Company, Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationContext:
    """
    What a principal may do, and where.

    Built fresh from the current assignment for every decision.
    """

    principal_id: str
    role: Role
    permissions: FrozenSet[Permission]
    company_id: Optional[str] = None
    tenant_id: Optional[str] = None

    @classmethod
    def from_assignment(cls, assignment: RoleAssignment, role: Role) -> 'AuthorizationContext':
        company_id, tenant_id = assignment.scope_binding
        return cls(
            principal_id=assignment.principal_id,
            role=role,
            permissions=role.permissions,
            company_id=company_id,
            tenant_id=tenant_id,
        )

    @property
    def scope(self) -> Scope:
        return self.role.scope

    def allows(self, action, resource) -> bool:
        return self.role.grants(action, resource)

    def in_scope(self, company_id=None, tenant_id=None) -> bool:
        """
        Check the requested context against the assignment's binding.

        System roles reach everything. Company roles need the requested
        company to match theirs. Tenant roles need the requested tenant to
        match theirs (and the company too, when one is given).
        """
        company_id = InputValidator.normalize_id(company_id)
        tenant_id = InputValidator.normalize_id(tenant_id)

        if self.scope == Scope.SYSTEM:
            return True
        if self.scope == Scope.COMPANY:
            return company_id is not None and company_id == self.company_id
        if tenant_id is None or tenant_id != self.tenant_id:
            return False
        if company_id is not None and company_id != self.company_id:
            return False
        return True


class RoleAssignmentStore:
    """
    Durable store of role assignments.

    A principal has at most one assignment. Assigning replaces role and
    binding together inside one transaction, so a concurrent reader sees
    either the old assignment or the new one, never a mix.
    """

    def __init__(self, registry: RoleRegistry):
        self.registry = registry

    def _validate_binding(self, principal_id, role: Role, company_id, tenant_id) -> Tuple:
        """
        Check that the identifiers match the role's scope.

        Returns:
            (company_uuid, tenant_uuid) ready to be stored

        Raises:
            InvalidScopeBinding: If identifiers are missing, superfluous,
                malformed or refer to an unknown or mismatched company/tenant
        """
        if not InputValidator.validate_principal_id(principal_id):
            raise InvalidScopeBinding(
                "Invalid principal id",
                details={'principal_id': principal_id}
            )

        has_company = company_id not in (None, '')
        has_tenant = tenant_id not in (None, '')
        details = {'role_id': role.id, 'scope': role.scope.value}

        if role.scope == Scope.SYSTEM:
            if has_company or has_tenant:
                raise InvalidScopeBinding(
                    "System roles cannot be bound to a company or tenant",
                    details=details
                )
            return None, None

        if not has_company:
            raise InvalidScopeBinding(
                f"Role '{role.id}' requires a company id",
                details=details
            )
        company_uuid = InputValidator.parse_uuid(company_id)
        if company_uuid is None or not Company.objects.exists_by_id(company_uuid):
            raise InvalidScopeBinding(
                "Unknown company",
                details={**details, 'company_id': str(company_id)}
            )

        if role.scope == Scope.COMPANY:
            if has_tenant:
                raise InvalidScopeBinding(
                    "Company roles cannot be bound to a tenant",
                    details=details
                )
            return company_uuid, None

        if not has_tenant:
            raise InvalidScopeBinding(
                f"Role '{role.id}' requires a tenant id",
                details=details
            )
        tenant_uuid = InputValidator.parse_uuid(tenant_id)
        if tenant_uuid is None or not Tenant.objects.belongs_to(tenant_uuid, company_uuid):
            raise InvalidScopeBinding(
                "Tenant does not exist in the given company",
                details={**details, 'company_id': str(company_id), 'tenant_id': str(tenant_id)}
            )
        return company_uuid, tenant_uuid

    def assign_role(self, principal_id, role_id, company_id=None, tenant_id=None, assigned_by='') -> RoleAssignment:
        """
        Create or replace the assignment of a principal.

        Raises:
            RoleNotFound: If role_id is not defined
            InvalidScopeBinding: If the identifiers do not fit the role's scope
            StoreUnavailable: If the store cannot be reached
        """
        role = self.registry.get_role(role_id)

        with store_errors('assign_role', store='Role assignment store'):
            company_uuid, tenant_uuid = self._validate_binding(principal_id, role, company_id, tenant_id)

            with transaction.atomic():
                previous = (
                    RoleAssignment.objects.select_for_update()
                    .filter(principal_id=principal_id)
                    .first()
                )
                before = previous.as_audit_state() if previous else None

                assignment, created = RoleAssignment.objects.update_or_create(
                    principal_id=principal_id,
                    defaults={
                        'role_id': role.id,
                        'company_id': company_uuid,
                        'tenant_id': tenant_uuid,
                        'assigned_by': assigned_by or '',
                    }
                )

        after = assignment.as_audit_state()
        if before != after:
            AuditLog.log_action(
                action='role_assigned',
                target_principal_id=principal_id,
                actor_principal_id=assigned_by,
                tenant_id=after['tenant_id'],
                diff={'before': before, 'after': after}
            )

        logger.info(
            f"Role '{role.id}' assigned",
            extra={
                'principal_id': principal_id,
                'role_id': role.id,
                'company_id': after['company_id'],
                'tenant_id': after['tenant_id'],
                'was_created': created,
            }
        )
        return assignment

    def get_role_assignment(self, principal_id) -> Optional[RoleAssignment]:
        """
        Read the current assignment of a principal.

        Returns None when the principal has no assignment.

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        if not principal_id:
            return None
        with store_errors('get_role_assignment', store='Role assignment store'):
            return RoleAssignment.objects.for_principal(principal_id)

    def revoke_role(self, principal_id, revoked_by='') -> bool:
        """
        Remove the assignment of a principal.

        Idempotent: returns False when there was nothing to revoke.
        """
        with store_errors('revoke_role', store='Role assignment store'):
            with transaction.atomic():
                previous = (
                    RoleAssignment.objects.select_for_update()
                    .filter(principal_id=principal_id)
                    .first()
                )
                if previous is None:
                    return False
                before = previous.as_audit_state()
                previous.hard_delete()

        AuditLog.log_action(
            action='role_revoked',
            target_principal_id=principal_id,
            actor_principal_id=revoked_by,
            tenant_id=before['tenant_id'],
            diff={'before': before, 'after': None}
        )
        logger.info(
            f"Role '{before['role_id']}' revoked",
            extra={'principal_id': principal_id, 'tenant_id': before['tenant_id']}
        )
        return True

    def list_for_tenant(self, tenant_id):
        """Assignments bound to a tenant."""
        with store_errors('list_for_tenant', store='Role assignment store'):
            return list(RoleAssignment.objects.for_tenant(tenant_id))

    def list_for_company(self, company_id):
        """Assignments bound to a company, including those of its tenants."""
        with store_errors('list_for_company', store='Role assignment store'):
            return list(RoleAssignment.objects.for_company(company_id))

    def list_for_role(self, role_id):
        with store_errors('list_for_role', store='Role assignment store'):
            return list(RoleAssignment.objects.for_role(role_id))


class PermissionResolver:
    """
    Answers "may principal P perform action A on resource R in context C?".

    Decisions are fail-closed: no assignment, an assignment naming a role
    that is no longer defined, or an unknown permission all yield False.
    The permission set is checked before the scope, so a principal lacking
    the permission is rejected the same way whatever context it asks for.
    Store failures propagate as StoreUnavailable and never read as a grant.
    """

    def __init__(self, registry: RoleRegistry, assignments: RoleAssignmentStore):
        self.registry = registry
        self.assignments = assignments

    def _lookup(self, principal_id) -> Tuple[Optional[AuthorizationContext], Optional[str]]:
        """Return (context, None), or (None, reason) when there is no usable assignment."""
        assignment = self.assignments.get_role_assignment(principal_id)
        if assignment is None:
            return None, 'no_assignment'
        role = self.registry.find_role(assignment.role_id)
        if role is None:
            logger.warning(
                f"Assignment references undefined role '{assignment.role_id}'",
                extra={'principal_id': principal_id, 'role_id': assignment.role_id}
            )
            return None, 'unknown_role'
        return AuthorizationContext.from_assignment(assignment, role), None

    def resolve(self, principal_id) -> Optional[AuthorizationContext]:
        """Build the authorization context of a principal (or None)."""
        return self._lookup(principal_id)[0]

    def _decide(self, context, action, resource, company_id, tenant_id) -> Optional[str]:
        """Return the denial reason, or None when the check passes."""
        if context is None:
            return 'no_assignment'
        if not context.allows(action, resource):
            return 'permission'
        if not context.in_scope(company_id, tenant_id):
            return 'scope'
        return None

    def can(self, principal_id, action, resource, company_id=None, tenant_id=None) -> bool:
        """
        Check a single permission in a context.

        Raises:
            StoreUnavailable: If the assignment store cannot be reached
        """
        context = self.resolve(principal_id)
        return self._decide(context, action, resource, company_id, tenant_id) is None

    def require(self, principal_id, action, resource, company_id=None, tenant_id=None) -> AuthorizationContext:
        """
        Like can(), but raise AccessDenied on denial.

        The denial is logged at INFO with its reason (no_assignment,
        unknown_role, permission or scope).
        """
        context, reason = self._lookup(principal_id)
        if context is not None:
            reason = self._decide(context, action, resource, company_id, tenant_id)
            if reason is None:
                return context

        SecurityLogger.log_permission_denied(
            principal_id=principal_id,
            action=action,
            resource=resource,
            reason=reason,
            company_id=InputValidator.normalize_id(company_id),
            tenant_id=InputValidator.normalize_id(tenant_id),
        )
        raise AccessDenied(
            "You do not have permission to perform this action",
            details={'action': str(action), 'resource': str(resource), 'reason': reason}
        )

    def has_any(self, principal_id, permissions: Iterable[Permission], company_id=None, tenant_id=None) -> bool:
        """True when at least one of the permissions is granted in the context."""
        context = self.resolve(principal_id)
        return any(
            self._decide(context, p.action, p.resource, company_id, tenant_id) is None
            for p in permissions
        )

    def has_all(self, principal_id, permissions: Iterable[Permission], company_id=None, tenant_id=None) -> bool:
        """True when every permission is granted in the context."""
        context = self.resolve(principal_id)
        return all(
            self._decide(context, p.action, p.resource, company_id, tenant_id) is None
            for p in permissions
        )

    def effective_permissions(self, principal_id) -> FrozenSet[Permission]:
        """Every permission the principal's role grants, wildcards expanded."""
        context = self.resolve(principal_id)
        if context is None:
            return frozenset()
        return context.role.expanded_permissions()

    def has_tenant_access(self, principal_id, tenant_id, company_id=None) -> bool:
        """True when the principal's binding reaches the tenant at all."""
        context = self.resolve(principal_id)
        if context is None:
            return False
        if company_id is None and context.scope == Scope.COMPANY:
            company_id = Tenant.objects.company_id_for(tenant_id)
        return context.in_scope(company_id, tenant_id)


@dataclass
class AccessControl:
    """The wired-up access-control services."""

    registry: RoleRegistry
    assignments: RoleAssignmentStore
    resolver: PermissionResolver


def build_access_control(registry: Optional[RoleRegistry] = None) -> AccessControl:
    """Wire registry, assignment store and resolver together."""
    registry = registry or default_registry()
    assignments = RoleAssignmentStore(registry)
    return AccessControl(
        registry=registry,
        assignments=assignments,
        resolver=PermissionResolver(registry, assignments),
    )
