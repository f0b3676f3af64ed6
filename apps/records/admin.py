"""
Django admin configuration for records app.
"""
from django.contrib import admin
from .models import Record


@admin.register(Record)
class RecordAdmin(admin.ModelAdmin):
    """
    Read-only view of stored records.

    Records are changed through the tenant-scoped API only.
    """
    list_display = ['collection', 'record_id', 'tenant_id', 'company_id', 'created_at']
    list_filter = ['collection', 'created_at']
    search_fields = ['record_id', 'tenant_id', 'company_id']
    readonly_fields = ['collection', 'record_id', 'tenant_id', 'company_id', 'data', 'created_at', 'updated_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
