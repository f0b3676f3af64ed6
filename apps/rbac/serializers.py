"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Roles (static definitions from the role registry)
- Role assignments and assignment requests
- The caller's own authorization context
- Audit logs
"""
from rest_framework import serializers
from apps.rbac.models import RoleAssignment, AuditLog


class RoleSerializer(serializers.Serializer):
    """Serializer for Role definitions (read-only)."""

    id = serializers.CharField(read_only=True)
    name = serializers.CharField(read_only=True)
    description = serializers.CharField(read_only=True)
    scope = serializers.CharField(read_only=True)
    permissions = serializers.SerializerMethodField()
    wildcards = serializers.SerializerMethodField()

    def get_permissions(self, role):
        """Permission codes, sorted for stable output."""
        return sorted(permission.code for permission in role.permissions)

    def get_wildcards(self, role):
        return sorted(wildcard.value for wildcard in role.wildcards)


class RoleAssignmentSerializer(serializers.ModelSerializer):
    """Serializer for RoleAssignment model."""

    company_id = serializers.UUIDField(read_only=True, allow_null=True)
    tenant_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = RoleAssignment
        fields = [
            'principal_id', 'role_id', 'company_id', 'tenant_id',
            'assigned_by', 'assigned_at', 'updated_at'
        ]
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    """
    Serializer for creating or replacing a principal's assignment.

    Whether company_id / tenant_id are required depends on the role's
    scope; that is checked by the assignment store.
    """

    role_id = serializers.CharField(max_length=64)
    company_id = serializers.UUIDField(required=False, allow_null=True)
    tenant_id = serializers.UUIDField(required=False, allow_null=True)


class AuthorizationContextSerializer(serializers.Serializer):
    """Serializer for the caller's own authorization context."""

    principal_id = serializers.CharField(read_only=True)
    role = RoleSerializer(read_only=True, allow_null=True)
    company_id = serializers.CharField(read_only=True, allow_null=True)
    tenant_id = serializers.CharField(read_only=True, allow_null=True)
    effective_permissions = serializers.ListField(child=serializers.CharField(), read_only=True)


class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    class Meta:
        model = AuditLog
        fields = [
            'id', 'action', 'actor_principal_id', 'target_principal_id',
            'tenant_id', 'diff', 'created_at'
        ]
        read_only_fields = fields
