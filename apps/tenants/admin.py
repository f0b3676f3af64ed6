"""
Django admin configuration for tenants app.
"""
from django.contrib import admin
from .models import Company, Tenant


class TenantInline(admin.TabularInline):
    model = Tenant
    extra = 0
    fields = ['name', 'slug', 'is_active']


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'slug']
    inlines = [TenantInline]


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'company', 'is_active', 'created_at']
    list_filter = ['is_active', 'company']
    search_fields = ['name', 'slug', 'company__name']
    readonly_fields = ['id', 'created_at', 'updated_at']
