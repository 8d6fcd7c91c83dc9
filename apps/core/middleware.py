"""
Request tracking middleware and logging filter.

Every request gets a request_id (taken from X-Request-ID when the caller
sends one), which is echoed back in the response and attached to every log
record emitted while the request is being handled.
"""
import logging
import threading
import time
import uuid
from typing import Optional
from django.http import HttpRequest, HttpResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.logging import PIIMasker

_request_context = threading.local()


def get_request_id() -> Optional[str]:
    """Return the request_id of the request handled by this thread, if any."""
    return getattr(_request_context, 'request_id', None)


def get_client_ip(request: HttpRequest) -> str:
    """
    Get client IP address from request headers.

    The first address of X-Forwarded-For wins, then X-Real-IP, then
    REMOTE_ADDR.
    """
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()

    real_ip = request.META.get('HTTP_X_REAL_IP')
    if real_ip:
        return real_ip

    return request.META.get('REMOTE_ADDR', 'unknown')


class RequestTrackingMiddleware(MiddlewareMixin):
    """
    Assign a request_id to each request and log its start and completion.
    """

    def __init__(self, get_response=None):
        super().__init__(get_response)
        self.logger = logging.getLogger('apps.core.request_tracking')

    def process_request(self, request: HttpRequest) -> Optional[HttpResponse]:
        request.request_id = request.META.get('HTTP_X_REQUEST_ID') or uuid.uuid4().hex
        request.start_time = time.time()
        _request_context.request_id = request.request_id

        self.logger.info(
            f"Request started: {request.method} {request.path}",
            extra={
                'request_id': request.request_id,
                'method': request.method,
                'path': request.path,
                'ip_address': get_client_ip(request),
                'user_agent': PIIMasker.mask_text(request.META.get('HTTP_USER_AGENT', '')),
                'event_type': 'request_start',
            }
        )
        return None

    def process_response(self, request: HttpRequest, response: HttpResponse) -> HttpResponse:
        duration = time.time() - getattr(request, 'start_time', time.time())
        request_id = getattr(request, 'request_id', None)

        if request_id:
            response['X-Request-ID'] = request_id

        status_code = response.status_code
        if status_code >= 500:
            log_method = self.logger.error
        elif status_code >= 400:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(
            f"Request completed: {request.method} {request.path} - {status_code} in {duration:.3f}s",
            extra={
                'request_id': request_id,
                'method': request.method,
                'path': request.path,
                'status_code': status_code,
                'duration_ms': round(duration * 1000, 2),
                'event_type': 'request_completion',
            }
        )

        _request_context.request_id = None
        return response

    def process_exception(self, request: HttpRequest, exception: Exception) -> Optional[HttpResponse]:
        duration = time.time() - getattr(request, 'start_time', time.time())
        self.logger.error(
            f"Request failed: {request.method} {request.path} - {type(exception).__name__}",
            extra={
                'request_id': getattr(request, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'duration_ms': round(duration * 1000, 2),
                'exception_type': type(exception).__name__,
                'exception_message': PIIMasker.mask_text(str(exception)),
                'event_type': 'request_exception',
            },
            exc_info=exception
        )
        return None


class RequestIDLoggingFilter(logging.Filter):
    """
    Add the current request_id to log records that do not carry one.
    """

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True
