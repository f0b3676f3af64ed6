"""
Django admin configuration for RBAC app.

Assignments are changed through RoleAssignmentStore (API or management
commands) so that every change is audited; the admin is read-only.
"""
from django.contrib import admin
from .models import RoleAssignment, AuditLog
from .roles import default_registry


class ReadOnlyAdmin(admin.ModelAdmin):
    """Admin that only lists and displays rows."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(RoleAssignment)
class RoleAssignmentAdmin(ReadOnlyAdmin):
    """Admin interface for RoleAssignment model."""
    list_display = ['principal_id', 'role_id', 'role_scope', 'company', 'tenant', 'assigned_by', 'assigned_at']
    list_filter = ['role_id', 'assigned_at']
    search_fields = ['principal_id', 'assigned_by', 'company__name', 'tenant__name']
    list_select_related = ['company', 'tenant']
    ordering = ['principal_id']

    def role_scope(self, obj):
        """Scope of the assigned role, or a marker for undefined roles."""
        role = default_registry().find_role(obj.role_id)
        return role.scope.label if role else 'undefined'
    role_scope.short_description = 'Scope'


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    """Admin interface for AuditLog model."""
    list_display = ['created_at', 'action', 'target_principal_id', 'actor_principal_id', 'tenant_id']
    list_filter = ['action', 'created_at']
    search_fields = ['target_principal_id', 'actor_principal_id', 'tenant_id']
    readonly_fields = ['action', 'target_principal_id', 'actor_principal_id', 'tenant_id', 'diff', 'created_at']
    ordering = ['-created_at']
