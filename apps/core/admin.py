"""
Django admin configuration for core app.
"""
from django.contrib import admin


# Customize admin site header and title
admin.site.site_header = "Tenant Access Control Administration"
admin.site.site_title = "Access Control Admin"
admin.site.index_title = "Roles, assignments and tenant records"
