"""
RBAC API URLs.

Provides endpoints for:
- Role listing
- The caller's own authorization context
- Role assignment management and history
"""
from django.urls import path
from apps.rbac.views import (
    RoleListView,
    MyAccessView,
    RoleAssignmentView,
    RoleAssignmentHistoryView,
    TenantAssignmentListView,
)

app_name = 'rbac'

urlpatterns = [
    path('roles/', RoleListView.as_view(), name='role-list'),
    path('me/', MyAccessView.as_view(), name='my-access'),
    path('assignments/<str:principal_id>/', RoleAssignmentView.as_view(), name='assignment-detail'),
    path('assignments/<str:principal_id>/history/', RoleAssignmentHistoryView.as_view(), name='assignment-history'),
    path('tenants/<uuid:tenant_id>/assignments/', TenantAssignmentListView.as_view(), name='tenant-assignments'),
]
