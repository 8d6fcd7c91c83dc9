"""
Sentry utilities for adding context and breadcrumbs.

All helpers are no-ops when SENTRY_DSN is not configured.
"""
import sentry_sdk
from django.conf import settings


def set_principal_context(principal):
    """
    Set the acting principal in Sentry for error tracking.

    Only the opaque id and role are sent; no contact details.

    Args:
        principal: apps.rbac.types.Principal
    """
    if not settings.SENTRY_DSN or principal is None:
        return

    sentry_sdk.set_user({
        "id": str(principal.id),
        "role": principal.role,
        "is_active": principal.is_active,
    })
    sentry_sdk.set_tag("principal_role", principal.role)


def add_breadcrumb(category, message, level="info", data=None):
    """
    Add a breadcrumb to Sentry for debugging.

    Args:
        category: Category of the breadcrumb (e.g. "rbac", "attempt_limit")
        message: Human-readable message
        level: Severity level (debug, info, warning, error)
        data: Optional dictionary of additional data
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )


def capture_exception(exception, **kwargs):
    """
    Capture an exception in Sentry with optional context.

    Args:
        exception: The exception to capture
        **kwargs: Context sections to attach, each a dict
    """
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_exception(exception)
