"""
Tenancy directory models.

Companies own tenants; a tenant is the smallest isolation partition.
Role assignments and tenant-partitioned records refer to these ids.
"""
from django.db import models
from apps.core.models import BaseModel, BaseModelManager
from apps.core.validators import InputValidator


class CompanyManager(BaseModelManager):
    """Manager for company queries."""
    
    def active(self):
        """Return only active companies."""
        return self.filter(is_active=True)
    
    def by_slug(self, slug):
        """Find company by slug."""
        return self.filter(slug=slug).first()
    
    def resolve(self, identifier):
        """Find company by slug first, then by ID."""
        company = self.by_slug(identifier)
        if company:
            return company
        company_uuid = InputValidator.parse_uuid(identifier)
        if company_uuid is None:
            return None
        return self.filter(id=company_uuid).first()
    
    def exists_by_id(self, company_id):
        """Check whether a company with this id exists."""
        company_uuid = InputValidator.parse_uuid(company_id)
        if company_uuid is None:
            return False
        return self.filter(id=company_uuid).exists()


class Company(BaseModel):
    """
    Company owning one or more tenants.
    
    Company-scoped roles are bound to a company and reach every tenant
    nested inside it.
    """
    
    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="URL-safe company identifier"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether company is active"
    )
    
    objects = CompanyManager()
    
    class Meta:
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'companies'
    
    def __str__(self):
        return self.name


class TenantManager(BaseModelManager):
    """Manager for tenant-scoped queries."""
    
    def active(self):
        """Return only active tenants."""
        return self.filter(is_active=True)
    
    def for_company(self, company):
        """Get all tenants nested in a company."""
        return self.filter(company=company)
    
    def by_slug(self, slug):
        """Find tenant by slug."""
        return self.filter(slug=slug).first()
    
    def resolve(self, identifier):
        """Find tenant by slug first, then by ID."""
        tenant = self.by_slug(identifier)
        if tenant:
            return tenant
        tenant_uuid = InputValidator.parse_uuid(identifier)
        if tenant_uuid is None:
            return None
        return self.filter(id=tenant_uuid).first()
    
    def company_id_for(self, tenant_id):
        """
        Return the owning company id of a tenant as a string.
        
        Returns None for unknown or malformed tenant ids.
        """
        tenant_uuid = InputValidator.parse_uuid(tenant_id)
        if tenant_uuid is None:
            return None
        company_id = self.filter(id=tenant_uuid).values_list('company_id', flat=True).first()
        return str(company_id) if company_id else None
    
    def belongs_to(self, tenant_id, company_id):
        """Check that a tenant is nested inside the given company."""
        tenant_uuid = InputValidator.parse_uuid(tenant_id)
        company_uuid = InputValidator.parse_uuid(company_id)
        if tenant_uuid is None or company_uuid is None:
            return False
        return self.filter(id=tenant_uuid, company_id=company_uuid).exists()


class Tenant(BaseModel):
    """
    Tenant model representing an isolated partition of a company.
    
    Leads, customers, activities and support records are partitioned by
    tenant id; no query may cross from one tenant into another.
    """
    
    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name='tenants',
        db_index=True,
        help_text="Company this tenant belongs to"
    )
    name = models.CharField(
        max_length=255,
        help_text="Tenant name"
    )
    slug = models.SlugField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="URL-safe tenant identifier"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether tenant is active"
    )
    
    objects = TenantManager()
    
    class Meta:
        db_table = 'tenants'
        ordering = ['company', 'name']
        indexes = [
            models.Index(fields=['company', 'is_active']),
        ]
    
    def __str__(self):
        return f"{self.company.name} / {self.name}"
