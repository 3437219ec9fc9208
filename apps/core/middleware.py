"""
Core middleware for request processing.
"""
import uuid
import logging
import threading
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_request_context = threading.local()


def set_log_context(**values):
    """Attach values (request_id, user_id, clinic_id) to log records of this thread."""
    for key, value in values.items():
        setattr(_request_context, key, value)


def clear_log_context():
    _request_context.__dict__.clear()


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        clear_log_context()
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        set_log_context(request_id=request_id)

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        clear_log_context()
        return response


class RequestContextFilter(logging.Filter):
    """
    Add request_id, user_id and clinic_id to log records from thread-local storage.
    """

    def filter(self, record):
        for key in ('request_id', 'user_id', 'clinic_id'):
            if not hasattr(record, key):
                value = getattr(_request_context, key, None)
                if value is not None:
                    setattr(record, key, value)
        return True
