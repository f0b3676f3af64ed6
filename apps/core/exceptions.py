"""
Access-control exception taxonomy and the DRF exception handler.

Denials are expected business outcomes and are rendered as 403 without
being logged as errors. Isolation violations always indicate a bug in the
storage layer and are rendered distinctly so operators never confuse them
with an ordinary denial.
"""
import logging
from contextlib import contextmanager
from django.db import InterfaceError, OperationalError
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

from apps.core.middleware import get_request_id

logger = logging.getLogger(__name__)


class AccessControlError(Exception):
    """Base exception for access-control errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'ACCESS_CONTROL_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(AccessControlError):
    """Raised when a role, assignment or record cannot be found."""
    status_code = status.HTTP_404_NOT_FOUND
    code = 'NOT_FOUND'


class RoleNotFound(NotFound):
    """Raised when an unknown role id is requested (configuration error)."""
    code = 'ROLE_NOT_FOUND'


class RecordNotFound(NotFound):
    """Raised when a record does not exist inside the requested tenant."""
    code = 'RECORD_NOT_FOUND'


class InvalidScopeBinding(AccessControlError):
    """Raised when assignment identifiers do not match the role's scope."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'INVALID_SCOPE_BINDING'


class AccessDenied(AccessControlError):
    """Raised when the principal is not authorized for the operation."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'ACCESS_DENIED'


class CrossTenantViolation(AccessControlError):
    """Raised when data from another tenant is observed inside a tenant scope."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'ISOLATION_VIOLATION'


class StoreUnavailable(AccessControlError):
    """Raised when the assignment or document store cannot be reached."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = 'STORE_UNAVAILABLE'


@contextmanager
def store_errors(operation: str, store: str = 'Store'):
    """Translate database connectivity failures into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(
            f"{store} unavailable during {operation}: {str(e)}",
            extra={'operation': operation},
            exc_info=True
        )
        raise StoreUnavailable(
            f"{store} is unavailable",
            details={'operation': operation}
        ) from e


def custom_exception_handler(exc, context):
    """
    Render access-control errors in a consistent format and log the rest.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) or get_request_id()

    if isinstance(exc, AccessControlError):
        body = {
            'error': exc.message,
            'code': exc.code,
        }

        if isinstance(exc, CrossTenantViolation):
            # Already reported by SecurityLogger; payload details stay server-side
            logger.critical(
                "Isolation violation surfaced to API caller",
                extra={
                    'request_id': request_id,
                    'path': request.path if request else None,
                }
            )
        elif isinstance(exc, StoreUnavailable):
            logger.error(
                f"Store unavailable: {exc.message}",
                extra={'request_id': request_id},
                exc_info=True
            )
        else:
            body['details'] = exc.details

        if request_id:
            body['request_id'] = request_id
        return Response(body, status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=True
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
