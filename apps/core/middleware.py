"""
Request correlation ids for access-control logs and error responses.
"""
import logging
import re
import threading
import uuid
from typing import Optional
from django.utils.deprecation import MiddlewareMixin

_local = threading.local()

# Upstream proxies may forward their own id; anything else is replaced
REQUEST_ID_PATTERN = re.compile(r'^[A-Za-z0-9._-]{1,64}$')


def get_request_id() -> Optional[str]:
    """Return the id of the request being served on this thread, if any."""
    return getattr(_local, 'request_id', None)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Attach a request id to every request and echo it as X-Request-ID.

    The id is also published on a thread-local so that denials and
    isolation violations logged deep inside the gateway can be matched
    to the response the caller received.
    """

    def process_request(self, request):
        incoming = request.META.get('HTTP_X_REQUEST_ID', '')
        request.request_id = incoming if REQUEST_ID_PATTERN.match(incoming) else uuid.uuid4().hex
        _local.request_id = request.request_id

    def process_response(self, request, response):
        request_id = getattr(request, 'request_id', None)
        if request_id:
            response['X-Request-ID'] = request_id
        _local.request_id = None
        return response


class LoggingFilter(logging.Filter):
    """Stamp log records with the current request id."""

    def filter(self, record):
        request_id = get_request_id()
        if request_id and not getattr(record, 'request_id', None):
            record.request_id = request_id
        return True
