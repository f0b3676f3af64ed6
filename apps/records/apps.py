"""
Records app configuration.
"""
from django.apps import AppConfig


class RecordsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.records'
    verbose_name = 'Tenant Records'
    
    def ready(self):
        """Fail at startup when RECORDS_DOCUMENT_STORE does not point at a document store."""
        from apps.records.documents import document_store_class
        document_store_class()
