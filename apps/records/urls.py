"""
Tenant-scoped record API URLs.
"""
from django.urls import path
from apps.records.views import RecordListView, RecordDetailView

app_name = 'records'

urlpatterns = [
    path(
        '<uuid:tenant_id>/records/<str:resource>/',
        RecordListView.as_view(),
        name='record-list'
    ),
    path(
        '<uuid:tenant_id>/records/<str:resource>/<str:record_id>/',
        RecordDetailView.as_view(),
        name='record-detail'
    ),
]
