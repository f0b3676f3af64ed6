"""
RBAC models for multi-tenant access control.

Implements:
- RoleAssignment (one active role per principal, with company/tenant binding)
- AuditLog (audit trail of assignment changes)

Role and permission definitions are not stored here; they are static
configuration (see apps.rbac.roles).
"""
import logging
from django.db import models
from apps.core.models import BaseModel, BaseModelManager
from apps.core.validators import InputValidator

logger = logging.getLogger(__name__)


class RoleAssignmentManager(BaseModelManager):
    """Manager for RoleAssignment queries."""

    def for_principal(self, principal_id):
        """Get the assignment of a principal (or None)."""
        return self.filter(principal_id=principal_id).first()

    def for_tenant(self, tenant_id):
        """Get all assignments bound to a tenant."""
        tenant_uuid = InputValidator.parse_uuid(tenant_id)
        if tenant_uuid is None:
            return self.none()
        return self.filter(tenant_id=tenant_uuid)

    def for_company(self, company_id):
        """Get all assignments bound to a company (including its tenants)."""
        company_uuid = InputValidator.parse_uuid(company_id)
        if company_uuid is None:
            return self.none()
        return self.filter(company_id=company_uuid)

    def for_role(self, role_id):
        """Get all assignments of a role."""
        return self.filter(role_id=role_id)


class RoleAssignment(BaseModel):
    """
    The single active role of a principal.

    Principals are authenticated by an external identity provider; only
    their opaque id is stored. Assigning a new role replaces the row as a
    whole (role and binding together), so there is never more than one
    assignment per principal.
    """

    principal_id = models.CharField(
        max_length=128,
        unique=True,
        db_index=True,
        help_text="Identity provider id of the principal"
    )
    role_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Role id from the role registry (e.g., 'tenant_admin')"
    )
    company = models.ForeignKey(
        'tenants.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='role_assignments',
        help_text="Bound company (company and tenant scoped roles)"
    )
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='role_assignments',
        help_text="Bound tenant (tenant scoped roles)"
    )

    # Audit fields
    assigned_by = models.CharField(
        max_length=128,
        blank=True,
        default='',
        help_text="Principal id that made the assignment"
    )
    assigned_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the principal was first granted access"
    )

    objects = RoleAssignmentManager()

    class Meta:
        db_table = 'role_assignments'
        ordering = ['principal_id']
        indexes = [
            models.Index(fields=['tenant', 'role_id']),
            models.Index(fields=['company', 'role_id']),
        ]

    def __str__(self):
        return f"{self.principal_id} -> {self.role_id}"

    def delete(self, using=None, keep_parents=False):
        """Revoked assignments are removed outright, never soft-deleted."""
        return self.hard_delete(using=using, keep_parents=keep_parents)

    @property
    def scope_binding(self):
        """Return (company_id, tenant_id) as strings (or None)."""
        return (
            InputValidator.normalize_id(self.company_id),
            InputValidator.normalize_id(self.tenant_id),
        )

    def as_audit_state(self):
        """Snapshot used in audit diffs."""
        company_id, tenant_id = self.scope_binding
        return {
            'role_id': self.role_id,
            'company_id': company_id,
            'tenant_id': tenant_id,
        }


class AuditLogQuerySet(models.QuerySet):
    """Chainable filters for AuditLog queries."""

    def for_principal(self, principal_id):
        """Get audit logs about a specific principal."""
        return self.filter(target_principal_id=principal_id)

    def by_action(self, action):
        """Get audit logs for a specific action."""
        return self.filter(action=action)

    def for_tenant(self, tenant_id):
        """Get audit logs recorded against a tenant."""
        return self.filter(tenant_id=InputValidator.normalize_id(tenant_id))


class AuditLog(models.Model):
    """
    Audit trail for role assignment changes.

    Rows are append-only and reference principals and tenants by id so
    that de-provisioning never erases the history of who had access.
    """

    ACTION_CHOICES = [
        ('role_assigned', 'Role assigned'),
        ('role_revoked', 'Role revoked'),
    ]

    action = models.CharField(
        max_length=50,
        choices=ACTION_CHOICES,
        db_index=True,
        help_text="Action performed"
    )
    actor_principal_id = models.CharField(
        max_length=128,
        blank=True,
        default='',
        help_text="Principal who performed the action (blank for system actions)"
    )
    target_principal_id = models.CharField(
        max_length=128,
        db_index=True,
        help_text="Principal whose access changed"
    )
    tenant_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Tenant the change applies to (null for system/company scope)"
    )
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after state in JSON format"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True
    )

    objects = models.Manager.from_queryset(AuditLogQuerySet)()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['target_principal_id', 'created_at']),
            models.Index(fields=['action', 'created_at']),
        ]

    def __str__(self):
        actor = self.actor_principal_id or 'System'
        return f"{actor} - {self.action} - {self.target_principal_id}"

    @classmethod
    def log_action(cls, action, target_principal_id, actor_principal_id='', tenant_id=None, diff=None):
        """
        Convenience method to create an audit log entry.

        Audit logging must not break the main operation, so failures are
        logged and swallowed. Call it after the change has been committed.

        Returns:
            AuditLog instance, or None if the write failed
        """
        try:
            return cls.objects.create(
                action=action,
                target_principal_id=target_principal_id,
                actor_principal_id=actor_principal_id or '',
                tenant_id=InputValidator.normalize_id(tenant_id),
                diff=diff or {},
            )
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'principal_id': target_principal_id},
                exc_info=True
            )
            return None
