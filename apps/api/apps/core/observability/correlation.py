"""
Request and sync-cycle correlation.

Generates/propagates X-Request-ID for HTTP requests and binds a cycle id
for sync worker runs, both stored in thread-local context for logging.
"""
import uuid
import time
import logging
from contextlib import contextmanager
from django.utils.deprecation import MiddlewareMixin
from threading import local

# Thread-local storage for request context
_request_context = local()

logger = logging.getLogger(__name__)


def get_request_id():
    """Get current request (or sync cycle) ID from thread-local storage."""
    return getattr(_request_context, 'request_id', None)


def get_trace_id():
    """Get current trace ID from thread-local storage."""
    return getattr(_request_context, 'trace_id', None)


def get_user_id():
    """Get current user ID from thread-local storage."""
    return getattr(_request_context, 'user_id', None)


def get_user_roles():
    """Get current user roles from thread-local storage."""
    return getattr(_request_context, 'user_roles', [])


@contextmanager
def sync_context(cycle_id=None):
    """
    Bind a sync cycle id as the request id for the duration of the block.

    Usage:
        with sync_context() as cycle_id:
            engine.run_once()
    """
    cycle_id = cycle_id or f'sync-{uuid.uuid4().hex[:12]}'
    previous = getattr(_request_context, 'request_id', None)
    _request_context.request_id = cycle_id
    try:
        yield cycle_id
    finally:
        _request_context.request_id = previous


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Middleware to handle request correlation.

    - Generates/propagates X-Request-ID
    - Stores context in thread-local for logging
    - Adds correlation headers to response
    - Tracks request duration
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    TRACE_ID_HEADER = 'HTTP_X_TRACE_ID'

    def process_request(self, request):
        request_id = request.META.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())
        trace_id = request.META.get(self.TRACE_ID_HEADER)

        request.request_id = request_id
        request.trace_id = trace_id
        request.start_time = time.time()

        _request_context.request_id = request_id
        _request_context.trace_id = trace_id

        # Session-authenticated users only; JWT auth happens later in the view
        if hasattr(request, 'user') and request.user.is_authenticated:
            _request_context.user_id = str(request.user.id)
            _request_context.user_roles = list(
                request.user.user_roles.values_list('role__name', flat=True)
            )
        else:
            _request_context.user_id = None
            _request_context.user_roles = []

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        if getattr(request, 'trace_id', None):
            response['X-Trace-ID'] = request.trace_id

        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                    'user_roles': get_user_roles(),
                }
            )

        clear_request_context()
        return response

    def process_exception(self, request, exception):
        from .metrics import metrics

        duration_ms = 0
        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

        metrics.exceptions_total.labels(
            exception_type=exception.__class__.__name__,
            location='http',
        ).inc()

        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'duration_ms': round(duration_ms, 2),
            }
        )


def clear_request_context():
    """Clear thread-local request context (useful for testing)."""
    for attr in ['request_id', 'trace_id', 'user_id', 'user_roles']:
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)
