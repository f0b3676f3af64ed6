"""
Storage model for tenant-partitioned records.
"""
from django.db import models
from apps.core.models import BaseModel, BaseModelManager


class RecordManager(BaseModelManager):
    """Manager for Record queries."""
    
    def in_collection(self, collection):
        return self.filter(collection=collection)


class Record(BaseModel):
    """
    A schemaless record of one collection (leads, customers, ...).
    
    The full document lives in `data`; the id, tenant and company are
    copied into indexed columns so that equality filters never need to
    look inside the JSON. Record ids are only unique within a tenant.
    """
    
    collection = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Collection name (a resource, e.g. 'leads')"
    )
    record_id = models.CharField(
        max_length=128,
        help_text="Record id, unique within its tenant"
    )
    tenant_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Owning tenant"
    )
    company_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Owning company"
    )
    data = models.JSONField(
        default=dict,
        help_text="The record document"
    )
    
    objects = RecordManager()
    
    class Meta:
        db_table = 'records'
        ordering = ['collection', 'created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['collection', 'tenant_id', 'record_id'],
                name='unique_record_per_tenant'
            ),
        ]
        indexes = [
            models.Index(fields=['collection', 'tenant_id']),
            models.Index(fields=['collection', 'company_id']),
        ]
    
    def __str__(self):
        return f"{self.collection}/{self.record_id} ({self.tenant_id})"
