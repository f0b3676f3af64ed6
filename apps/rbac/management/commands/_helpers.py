"""
Shared argument handling for the RBAC management commands.
"""
from django.core.management.base import CommandError
from apps.tenants.models import Company, Tenant


def resolve_company_id(identifier):
    """Turn a company slug or id into a company id string (None passes through)."""
    if not identifier:
        return None
    company = Company.objects.resolve(identifier)
    if not company:
        raise CommandError(f'Company not found: {identifier}')
    return str(company.id)


def resolve_tenant_id(identifier):
    """Turn a tenant slug or id into a tenant id string (None passes through)."""
    if not identifier:
        return None
    tenant = Tenant.objects.resolve(identifier)
    if not tenant:
        raise CommandError(f'Tenant not found: {identifier}')
    return str(tenant.id)
