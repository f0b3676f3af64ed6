"""
RBAC app configuration.
"""
from django.apps import AppConfig


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'
    
    def ready(self):
        """Build the role table once so that a bad RBAC_EXTRA_ROLES fails at startup."""
        from apps.rbac.roles import default_registry
        default_registry()
