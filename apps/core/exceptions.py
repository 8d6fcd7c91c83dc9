"""
Exception hierarchy and DRF exception handler.

Authorization outcomes are split in three families so operators can tell
them apart in logs and responses:

- Unauthenticated: no principal reached the engine (401)
- Authorization configuration errors: the role catalog and the data
  disagree (UnknownRole / UnknownPermission); logged loudly, never an
  open door
- StoreUnavailable: assignments could not be read; requests fail closed

An ordinary denial is not an exception; the engine returns False.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class SevaException(Exception):
    """Base exception for Seva-specific errors."""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class Unauthenticated(SevaException):
    """Raised when an authorization check is attempted without a principal."""
    status_code = 401
    code = 'UNAUTHENTICATED'

    def __init__(self, message='Authentication required', details=None):
        super().__init__(message, details)


class PermissionDeniedError(SevaException):
    """Raised by callers that turn a denied decision into a rejection."""
    status_code = 403
    code = 'PERMISSION_DENIED'


class AuthorizationConfigurationError(SevaException):
    """The role catalog is inconsistent with itself or with stored data."""
    status_code = 500
    code = 'AUTHORIZATION_MISCONFIGURED'


class UnknownRole(AuthorizationConfigurationError):
    """Raised when a role tag is not present in the role catalog."""
    code = 'UNKNOWN_ROLE'

    def __init__(self, role, details=None):
        self.role = role
        super().__init__(f"Unknown role: {role!r}", details)


class UnknownPermission(AuthorizationConfigurationError):
    """Raised when a permission name is not defined in the role catalog."""
    code = 'UNKNOWN_PERMISSION'

    def __init__(self, permission, details=None):
        self.permission = permission
        super().__init__(f"Unknown permission: {permission!r}", details)


class StoreUnavailable(SevaException):
    """Raised when role assignments cannot be read."""
    status_code = 503
    code = 'ASSIGNMENT_STORE_UNAVAILABLE'


class AttemptLimitExceeded(SevaException):
    """Raised when an identity runs out of attempts for an operation."""
    status_code = 429
    code = 'RATE_LIMIT_EXCEEDED'

    def __init__(self, message, retry_after: int, details=None):
        super().__init__(message, details)
        self.retry_after = retry_after


class ValidationError(SevaException):
    """Raised when input validation fails."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class RoleAssignmentError(SevaException):
    """Raised when a role assignment change conflicts with current state."""
    status_code = 409
    code = 'ROLE_ASSIGNMENT_CONFLICT'


def custom_exception_handler(exc, context):
    """
    DRF exception handler that maps Seva exceptions to JSON responses.

    Every handled exception is logged with the request_id set by
    RequestTrackingMiddleware, and the id is echoed in the body.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, SevaException):
        log_method = logger.error if exc.status_code >= 500 else logger.warning
        log_method(
            f"API exception: {exc.__class__.__name__}: {exc.message}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
                'error_code': exc.code,
            }
        )

        body = {
            'error': {
                'code': exc.code,
                'message': exc.message,
            },
            'request_id': request_id,
        }
        if exc.details:
            body['error']['details'] = exc.details

        if isinstance(exc, AuthorizationConfigurationError):
            # Do not leak catalog internals to the client
            body['error']['message'] = 'Access could not be evaluated'
            body['error'].pop('details', None)

        response = Response(body, status=exc.status_code)
        if isinstance(exc, AttemptLimitExceeded):
            body['error']['retry_after'] = exc.retry_after
            response['Retry-After'] = str(exc.retry_after)
        return response

    # Call DRF's default exception handler
    response = exception_handler(exc, context)

    logger.error(
        f"API exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    if response is None:
        return Response(
            {
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                },
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
