"""
DRF permission classes and decorators for RBAC permission enforcement.

This module provides:
- HasResourcePermission: DRF permission class that enforces an (action, resource) requirement
- @requires_permission: Decorator to declare the required permission on views
"""
import logging
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


class HasResourcePermission(BasePermission):
    """
    DRF permission class that enforces permission requirements on API endpoints.
    
    This permission class:
    1. Reads required_permission from the handler method or the view
    2. Takes the authorization context from the URL's tenant_id / company_id
       kwargs (a tenant's company is looked up in the tenant directory)
    3. Delegates the decision to PermissionResolver.require(), which logs the
       denial and raises AccessDenied
    
    Usage in views:
        class MyView(APIView):
            permission_classes = [HasResourcePermission]
            required_permission = (Action.READ, Resource.USERS)
    
    Or use with decorator:
        @requires_permission(Action.READ, Resource.USERS)
        class MyView(APIView):
            def get(self, request, tenant_id):
                pass
    """
    
    def get_required_permission(self, request, view):
        handler = getattr(view, request.method.lower(), None)
        return (
            getattr(handler, 'required_permission', None)
            or getattr(view, 'required_permission', None)
        )
    
    def has_permission(self, request, view):
        """
        Check that the principal holds the required permission in the URL's context.
        
        Returns:
            bool: True when no permission is declared or the check passes
        
        Raises:
            AccessDenied: If the resolver denies the request
        """
        required = self.get_required_permission(request, view)
        if not required:
            return True
        
        principal_id = getattr(request.user, 'principal_id', None)
        if not principal_id:
            return False
        
        from apps.rbac.services import build_access_control
        from apps.tenants.models import Tenant
        
        action, resource = required
        tenant_id = view.kwargs.get('tenant_id')
        company_id = view.kwargs.get('company_id')
        if tenant_id and not company_id:
            company_id = Tenant.objects.company_id_for(tenant_id)
        
        get_access_control = getattr(view, 'get_access_control', None)
        access = get_access_control() if get_access_control else build_access_control()
        access.resolver.require(
            principal_id, action, resource,
            company_id=company_id,
            tenant_id=tenant_id,
        )
        
        logger.debug(
            f"Permission granted: {action}:{resource}",
            extra={
                'principal_id': principal_id,
                'view': view.__class__.__name__,
                'method': request.method,
            }
        )
        return True


def requires_permission(action, resource):
    """
    Decorator to declare the required permission on view classes or methods.
    
    This decorator sets the required_permission attribute, which is then
    checked by the HasResourcePermission permission class.
    
    Usage:
        @requires_permission(Action.READ, Resource.USERS)
        class AssignmentListView(APIView):
            permission_classes = [HasResourcePermission]
    
    Or on individual methods:
        class AssignmentView(APIView):
            permission_classes = [HasResourcePermission]
            
            @requires_permission(Action.READ, Resource.USERS)
            def get(self, request, tenant_id):
                pass
    
    Args:
        action: Required action
        resource: Required resource
        
    Returns:
        Decorator function that sets required_permission attribute
    """
    def decorator(view_or_method):
        view_or_method.required_permission = (action, resource)
        return view_or_method
    
    return decorator
