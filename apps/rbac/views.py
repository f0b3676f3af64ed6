"""
RBAC REST API views.

Implements endpoints for:
- Role listing (static role table)
- The caller's own authorization context
- Role assignment management (read, assign/switch, revoke)
- Per-tenant assignment listing and assignment history
"""
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import NotFound
from apps.core.permissions import HasResourcePermission, requires_permission
from apps.rbac.catalog import Action, Resource
from apps.rbac.models import AuditLog
from apps.rbac.roles import Scope
from apps.rbac.serializers import (
    RoleSerializer, RoleAssignmentSerializer, AssignRoleSerializer,
    AuthorizationContextSerializer, AuditLogSerializer,
)
from apps.rbac.services import build_access_control
from apps.tenants.models import Tenant


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


class AccessControlMixin:
    """Gives a view the access-control services (overridable in tests)."""

    access_control = None

    def get_access_control(self):
        if self.access_control is None:
            self.access_control = build_access_control()
        return self.access_control


def binding_context(company_id, tenant_id):
    """
    Complete a (company_id, tenant_id) binding for an authorization check.

    A tenant's company is always taken from the tenant directory.
    """
    if tenant_id:
        company_id = Tenant.objects.company_id_for(tenant_id) or company_id
    return company_id, tenant_id


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List the role table. Roles are static configuration and cannot be created
or edited through the API.

**No permission required** - any authenticated principal can view roles.
        ''',
        parameters=[
            OpenApiParameter(
                name='scope',
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description='Restrict to one scope: system, company or tenant',
                required=False,
            ),
        ],
        responses={200: RoleSerializer(many=True), 400: OpenApiTypes.OBJECT},
    )
)
class RoleListView(AccessControlMixin, APIView):
    """
    GET /v1/rbac/roles/

    List roles, optionally filtered by scope, ordered by scope then id.
    """

    def get(self, request):
        scope = request.query_params.get('scope')
        if scope and scope not in Scope.values:
            raise ValidationError({'scope': f"Must be one of: {', '.join(Scope.values)}"})

        roles = self.get_access_control().registry.list_roles(scope=scope or None)
        serializer = RoleSerializer(roles, many=True)

        return Response({
            'count': len(roles),
            'roles': serializer.data
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Get my authorization context',
        description='''
Return the caller's role, its binding and the effective permission set.

**No permission required** - principals can always see their own access.
A principal without an assignment gets a null role and no permissions.
        ''',
        responses={200: AuthorizationContextSerializer},
        examples=[
            OpenApiExample(
                'Tenant agent',
                value={
                    'principal_id': 'user-42',
                    'role': {
                        'id': 'tenant_agent',
                        'name': 'Tenant Agent',
                        'description': 'Handles leads and customer interactions',
                        'scope': 'tenant',
                        'permissions': ['create:leads', 'read:leads'],
                        'wildcards': []
                    },
                    'company_id': '123e4567-e89b-12d3-a456-426614174000',
                    'tenant_id': '123e4567-e89b-12d3-a456-426614174001',
                    'effective_permissions': ['create:leads', 'read:leads']
                },
                response_only=True
            )
        ]
    )
)
class MyAccessView(AccessControlMixin, APIView):
    """
    GET /v1/rbac/me/

    The caller's own authorization context.
    """

    def get(self, request):
        principal_id = request.user.principal_id
        resolver = self.get_access_control().resolver
        context = resolver.resolve(principal_id)

        data = {
            'principal_id': principal_id,
            'role': context.role if context else None,
            'company_id': context.company_id if context else None,
            'tenant_id': context.tenant_id if context else None,
            'effective_permissions': sorted(
                permission.code for permission in resolver.effective_permissions(principal_id)
            ),
        }
        return Response(AuthorizationContextSerializer(data).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Get role assignment',
        description='''
Return the current assignment of a principal.

**Required permission:** `read:users` in the scope of the assignment
(principals may always read their own).
        ''',
        responses={200: RoleAssignmentSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Assign or switch role',
        description='''
Create or replace the single assignment of a principal. Role and binding
are replaced together.

**Required permission:** `manage:users` in the scope of the new binding and,
when the principal already has an assignment, in the scope of that one too.
        ''',
        request=AssignRoleSerializer,
        responses={
            200: RoleAssignmentSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Tenant role',
                value={
                    'role_id': 'tenant_agent',
                    'company_id': '123e4567-e89b-12d3-a456-426614174000',
                    'tenant_id': '123e4567-e89b-12d3-a456-426614174001'
                },
                request_only=True
            )
        ]
    ),
    delete=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Revoke role assignment',
        description='''
Remove the assignment of a principal. The principal immediately loses all
access.

**Required permission:** `manage:users` in the scope of the assignment.
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class RoleAssignmentView(AccessControlMixin, APIView):
    """
    GET|PUT|DELETE /v1/rbac/assignments/<principal_id>/
    """

    def _require_over(self, request, action, assignment):
        """Require action:users over an existing assignment's binding."""
        company_id, tenant_id = assignment.scope_binding
        self.get_access_control().resolver.require(
            request.user.principal_id, action, Resource.USERS,
            company_id=company_id, tenant_id=tenant_id,
        )

    def _get_assignment(self, principal_id):
        assignment = self.get_access_control().assignments.get_role_assignment(principal_id)
        if assignment is None:
            raise NotFound(
                "Principal has no role assignment",
                details={'principal_id': principal_id}
            )
        return assignment

    def get(self, request, principal_id):
        assignment = self._get_assignment(principal_id)
        if principal_id != request.user.principal_id:
            self._require_over(request, Action.READ, assignment)
        return Response(RoleAssignmentSerializer(assignment).data)

    def put(self, request, principal_id):
        serializer = AssignRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        access = self.get_access_control()
        company_id, tenant_id = binding_context(data.get('company_id'), data.get('tenant_id'))
        access.resolver.require(
            request.user.principal_id, Action.MANAGE, Resource.USERS,
            company_id=company_id, tenant_id=tenant_id,
        )
        existing = access.assignments.get_role_assignment(principal_id)
        if existing is not None:
            self._require_over(request, Action.MANAGE, existing)

        assignment = access.assignments.assign_role(
            principal_id,
            data['role_id'],
            company_id=data.get('company_id'),
            tenant_id=data.get('tenant_id'),
            assigned_by=request.user.principal_id,
        )
        return Response(RoleAssignmentSerializer(assignment).data)

    def delete(self, request, principal_id):
        assignment = self._get_assignment(principal_id)
        self._require_over(request, Action.MANAGE, assignment)
        self.get_access_control().assignments.revoke_role(
            principal_id, revoked_by=request.user.principal_id
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Assignment history',
        description='''
Audit trail of assignment changes for a principal, newest first.

**Required permission:** `read:users` in the scope of the current
assignment.
        ''',
        responses={200: AuditLogSerializer(many=True), 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class RoleAssignmentHistoryView(RoleAssignmentView):
    """
    GET /v1/rbac/assignments/<principal_id>/history/
    """

    http_method_names = ['get', 'head', 'options']
    pagination_class = StandardResultsSetPagination

    def get(self, request, principal_id):
        assignment = self._get_assignment(principal_id)
        self._require_over(request, Action.READ, assignment)

        logs = AuditLog.objects.for_principal(principal_id)
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request, view=self)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary='List tenant assignments',
        description='''
List the principals bound to a tenant.

**Required permission:** `read:users` in the tenant.
        ''',
        responses={200: RoleAssignmentSerializer(many=True), 403: OpenApiTypes.OBJECT},
    )
)
@requires_permission(Action.READ, Resource.USERS)
class TenantAssignmentListView(AccessControlMixin, APIView):
    """
    GET /v1/rbac/tenants/<tenant_id>/assignments/
    """

    permission_classes = [IsAuthenticated, HasResourcePermission]
    pagination_class = StandardResultsSetPagination

    def get(self, request, tenant_id):
        assignments = self.get_access_control().assignments.list_for_tenant(tenant_id)
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(assignments, request, view=self)
        return paginator.get_paginated_response(RoleAssignmentSerializer(page, many=True).data)
