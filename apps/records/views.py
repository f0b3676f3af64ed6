"""
Tenant-scoped record API views.

Every request goes through TenantScopedGateway, which authorizes the
principal in the URL's tenant before touching storage.
"""
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.rbac.views import AccessControlMixin, StandardResultsSetPagination
from apps.records.gateway import build_gateway

RESOURCE_PARAMETER = OpenApiParameter(
    name='resource',
    type=OpenApiTypes.STR,
    location=OpenApiParameter.PATH,
    description='Collection name, e.g. leads, customers or activities',
)


class GatewayMixin(AccessControlMixin):
    """Gives a view a gateway over the configured document store."""

    documents = None

    def get_gateway(self):
        return build_gateway(access=self.get_access_control(), documents=self.documents)

    def get_payload(self, request):
        if not isinstance(request.data, dict):
            raise ValidationError({'non_field_errors': ['Expected a JSON object.']})
        return dict(request.data)


@extend_schema_view(
    get=extend_schema(
        tags=['Records'],
        summary='List records',
        description='''
List the records of a collection in a tenant.

**Required permission:** `read:<resource>` in the tenant.
        ''',
        parameters=[RESOURCE_PARAMETER],
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    post=extend_schema(
        tags=['Records'],
        summary='Create record',
        description='''
Create a record in a tenant. The server assigns the id and stamps the
tenant and company; a payload naming another tenant or company is refused.

**Required permission:** `create:<resource>` in the tenant.
        ''',
        parameters=[RESOURCE_PARAMETER],
        request=OpenApiTypes.OBJECT,
        responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
class RecordListView(GatewayMixin, APIView):
    """
    GET|POST /v1/tenants/<tenant_id>/records/<resource>/
    """

    pagination_class = StandardResultsSetPagination

    def get(self, request, tenant_id, resource):
        records = self.get_gateway().read_many(request.user.principal_id, resource, tenant_id)
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(records, request, view=self)
        return paginator.get_paginated_response(page)

    def post(self, request, tenant_id, resource):
        payload = self.get_payload(request)
        if payload.get('id') not in (None, ''):
            raise ValidationError({'id': ['Ids are assigned by the server; use PUT to update.']})
        payload.pop('id', None)

        record = self.get_gateway().write(request.user.principal_id, resource, payload, tenant_id)
        return Response(record, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['Records'],
        summary='Get record',
        description='''
Fetch one record of a tenant.

**Required permission:** `read:<resource>` in the tenant.
        ''',
        parameters=[RESOURCE_PARAMETER],
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['Records'],
        summary='Update record',
        description='''
Merge the payload into an existing record of the tenant. A record id that
the tenant does not have is a 404, even if another tenant uses it.

**Required permission:** `update:<resource>` in the tenant.
        ''',
        parameters=[RESOURCE_PARAMETER],
        request=OpenApiTypes.OBJECT,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['Records'],
        summary='Delete record',
        description='''
Delete a record of the tenant.

**Required permission:** `delete:<resource>` in the tenant.
        ''',
        parameters=[RESOURCE_PARAMETER],
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class RecordDetailView(GatewayMixin, APIView):
    """
    GET|PUT|DELETE /v1/tenants/<tenant_id>/records/<resource>/<record_id>/
    """

    def get(self, request, tenant_id, resource, record_id):
        record = self.get_gateway().read_one(request.user.principal_id, resource, record_id, tenant_id)
        return Response(record)

    def put(self, request, tenant_id, resource, record_id):
        payload = self.get_payload(request)
        if payload.get('id') not in (None, '', record_id):
            raise ValidationError({'id': ['Does not match the URL.']})
        payload['id'] = record_id

        record = self.get_gateway().write(request.user.principal_id, resource, payload, tenant_id)
        return Response(record)

    def delete(self, request, tenant_id, resource, record_id):
        self.get_gateway().delete(request.user.principal_id, resource, record_id, tenant_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
