"""
Core middleware for request processing.
"""
import re
import uuid
import logging
import threading
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_request_context = threading.local()

# Matches the request_id column of the audit trail.
REQUEST_ID_MAX_LENGTH = 64
REQUEST_ID_PATTERN = re.compile(r'^[A-Za-z0-9._:-]+$')


def normalize_request_id(value):
    """Return a client supplied request id if it is short and printable, else None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or len(value) > REQUEST_ID_MAX_LENGTH or not REQUEST_ID_PATTERN.match(value):
        return None
    return value


def get_current_request_id():
    """Request id of the request being served on this thread, if any."""
    return getattr(_request_context, 'request_id', None)


def set_current_actor_id(actor_id):
    _request_context.actor_id = str(actor_id) if actor_id else None


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        supplied = request.META.get('HTTP_X_REQUEST_ID')
        request_id = normalize_request_id(supplied)
        if request_id is None:
            if supplied:
                logger.info(
                    "Replacing malformed X-Request-ID header",
                    extra={'header_length': len(supplied)}
                )
            request_id = str(uuid.uuid4())
        request.request_id = request_id

        # Thread-local storage for logging
        _request_context.request_id = request_id
        _request_context.actor_id = None

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _request_context.request_id = None
        _request_context.actor_id = None
        return response


class LoggingFilter(logging.Filter):
    """
    Add request_id and actor_id to log records from thread-local storage.
    """

    def filter(self, record):
        request_id = getattr(_request_context, 'request_id', None)
        if request_id and not hasattr(record, 'request_id'):
            record.request_id = request_id

        actor_id = getattr(_request_context, 'actor_id', None)
        if actor_id and not hasattr(record, 'actor_id'):
            record.actor_id = actor_id

        return True
