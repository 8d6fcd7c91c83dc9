"""
DRF permission classes and decorators backed by the RBAC decision engine.

This module provides:
- HasPermissions: enforces `required_permissions` (all) or
  `any_permissions` (any one) declared on the view or handler method
- HasResourceAccess: object-level region/project/scheme/owner check
- @requires_permissions / @requires_any_permission: declare the above
"""
import logging
from functools import wraps
from rest_framework.exceptions import NotAuthenticated
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger
from apps.core.middleware import get_client_ip
from apps.core.sentry_utils import set_principal_context
from apps.rbac.services import get_decision_engine
from apps.rbac.types import Resource, principal_from_request

logger = logging.getLogger(__name__)


def _as_list(value):
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _declared(view, request, attribute):
    """Read a permission declaration from the handler method, then the view."""
    handler = getattr(view, request.method.lower(), None) if request.method else None
    value = getattr(handler, attribute, None)
    if value is None:
        value = getattr(view, attribute, None)
    return _as_list(value)


def _require_principal(request):
    principal = principal_from_request(request)
    if principal is None:
        raise NotAuthenticated()
    set_principal_context(principal)
    return principal


class HasPermissions(BasePermission):
    """
    DRF permission class that enforces permission requirements on API endpoints.

    Usage in views:
        class BeneficiaryListView(APIView):
            permission_classes = [HasPermissions]
            required_permissions = ['beneficiaries.read.regional']

    The granted/missing names are stored on the request as
    `granted_permission` and `checked_permissions` for audit logging.
    """

    engine = None

    def get_engine(self):
        return self.engine or get_decision_engine()

    def has_permission(self, request, view):
        required = _declared(view, request, 'required_permissions')
        any_of = _declared(view, request, 'any_permissions')

        if not required and not any_of:
            return True

        principal = _require_principal(request)
        engine = self.get_engine()

        if required:
            decision = engine.check_permission(principal, required, require_all=True)
            checked = required
        else:
            decision = engine.check_permission(principal, any_of, require_all=False)
            checked = any_of

        request.checked_permissions = checked
        request.granted_permission = decision.matched

        if not decision.allowed:
            SecurityLogger.log_permission_denied(
                principal_id=principal.id,
                role=principal.role,
                permissions=decision.missing,
                reason=decision.reason,
            )
            logger.warning(
                f"Permission denied: principal {principal.id} ({principal.role}) on {view.__class__.__name__}",
                extra={
                    'principal_id': principal.id,
                    'role': principal.role,
                    'missing_permissions': decision.missing,
                    'reason': decision.reason,
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'ip_address': get_client_ip(request),
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        return True


class HasResourceAccess(BasePermission):
    """
    Object-level check: the object must fall inside the principal's scope
    (or, for beneficiaries, belong to the principal).
    """

    engine = None

    def get_engine(self):
        return self.engine or get_decision_engine()

    def has_permission(self, request, view):
        return True

    def has_object_permission(self, request, view, obj):
        principal = _require_principal(request)
        resource = Resource.from_object(obj)
        decision = self.get_engine().explain_resource_access(principal, resource)

        if not decision.allowed:
            SecurityLogger.log_resource_access_denied(
                principal_id=principal.id,
                role=principal.role,
                resource=resource.describe(),
                reason=decision.reason,
            )
            logger.warning(
                f"Object permission denied: {obj.__class__.__name__} outside scope of principal {principal.id}",
                extra={
                    'principal_id': principal.id,
                    'object_type': obj.__class__.__name__,
                    'object_id': str(getattr(obj, 'id', '')),
                    'reason': decision.reason,
                    'region_ok': decision.region_ok,
                    'project_ok': decision.project_ok,
                    'scheme_ok': decision.scheme_ok,
                    'view': view.__class__.__name__,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
        return decision.allowed


def _declaring(attribute, names):
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            setattr(view_or_method, attribute, list(names))
            return view_or_method

        @wraps(view_or_method)
        def wrapped(*args, **kwargs):
            return view_or_method(*args, **kwargs)

        setattr(wrapped, attribute, list(names))
        return wrapped

    return decorator


def requires_permissions(*permissions):
    """
    Declare permissions that are all required, on a view class or handler.

    Usage:
        @requires_permissions('applications.read.regional')
        class ApplicationListView(APIView):
            permission_classes = [HasPermissions]

        class ApplicationView(APIView):
            permission_classes = [HasPermissions]

            @requires_permissions('applications.approve')
            def post(self, request, pk):
                pass
    """
    return _declaring('required_permissions', permissions)


def requires_any_permission(*permissions):
    """Declare permissions of which any one suffices."""
    return _declaring('any_permissions', permissions)
