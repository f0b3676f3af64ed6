"""
URL configuration for the access control service.
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    path('admin/', admin.site.urls),
    
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    
    # RBAC endpoints
    path('v1/rbac/', include('apps.rbac.urls')),  # Roles, my access, assignments
    
    # Tenant-scoped records
    path('v1/tenants/', include('apps.records.urls')),  # Leads, customers, activities, ...
]
