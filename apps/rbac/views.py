"""
RBAC REST API views.

Implements endpoints for:
- Catalog inspection (roles, permission definitions)
- The caller's own effective access and permission checks
- Role assignment lifecycle (grant, approve, revoke, validity, overrides)
- The expiry sweep
"""
from django.utils import timezone
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasPermissions, requires_permissions
from apps.core.rate_limiting import check_attempt_limit
from apps.rbac.catalog import default_catalog
from apps.rbac.models import RoleAssignment
from apps.rbac.scope import UNRESTRICTED, ALL_PERMISSIONS
from apps.rbac.serializers import (
    AssignmentPermissionOverrideSerializer, CheckPermissionSerializer,
    GrantRoleSerializer, PermissionDefinitionSerializer,
    PermissionOverrideCreateSerializer, RevokeRoleSerializer,
    RoleAssignmentSerializer, RoleSerializer, UpdateValiditySerializer,
)
from apps.rbac.services import RoleAssignmentService, get_decision_engine
from apps.rbac.types import principal_from_request


# Grants per caller and client address within ATTEMPT_LIMIT_WINDOW_MS
GRANT_MAX_ATTEMPTS = 30


def _principal(request):
    principal = principal_from_request(request)
    if principal is None:
        raise NotAuthenticated()
    return principal


class RoleListView(APIView):
    """
    GET /v1/rbac/roles

    List catalog roles with their managed levels and manageable roles.

    Required permission: roles.read
    """

    permission_classes = [HasPermissions]
    required_permissions = ['roles.read']

    @extend_schema(tags=['RBAC'], summary='List roles', responses={200: RoleSerializer(many=True)})
    def get(self, request):
        catalog = default_catalog()
        roles = [catalog.role(name) for name in catalog.roles()]
        return Response(RoleSerializer(roles, many=True).data)


class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions

    Required permission: permissions.read
    """

    permission_classes = [HasPermissions]
    required_permissions = ['permissions.read']

    @extend_schema(
        tags=['RBAC'],
        summary='List permission definitions',
        responses={200: PermissionDefinitionSerializer(many=True)}
    )
    def get(self, request):
        definitions = default_catalog().permission_definitions()
        module = request.query_params.get('module')
        if module:
            definitions = [d for d in definitions if d.module == module]
        return Response(PermissionDefinitionSerializer(definitions, many=True).data)


class MyAccessView(APIView):
    """
    GET /v1/rbac/access/me

    The caller's effective permissions and scope. Global roles report
    "*" for permissions and "unrestricted" for scope.
    """

    @extend_schema(tags=['RBAC'], summary='My effective access', responses={200: OpenApiTypes.OBJECT})
    def get(self, request):
        principal = _principal(request)
        if not principal.is_active:
            raise PermissionDenied('Principal is inactive')
        engine = get_decision_engine()
        catalog = engine.catalog
        access = engine.resolver.resolve(principal, timezone.now())

        if access.permissions is ALL_PERMISSIONS:
            permissions = '*'
        else:
            permissions = sorted(access.permissions)

        scope = 'unrestricted' if access.scope is UNRESTRICTED else access.scope.to_dict()

        return Response({
            'principal_id': principal.id,
            'role': principal.role,
            'permissions': permissions,
            'scope': scope,
            'managed_levels': [level.value for level in catalog.managed_levels_of(principal.role)],
            'manageable_roles': sorted(catalog.manageable_roles_of(principal.role)),
            'assignments': [
                {'id': a.id, 'role': a.role, 'valid_until': a.valid_until}
                for a in access.assignments
            ],
        })


class CheckPermissionView(APIView):
    """
    POST /v1/rbac/access/check

    Explain whether the caller holds the given permissions.
    """

    @extend_schema(
        tags=['RBAC'],
        summary='Check my permissions',
        request=CheckPermissionSerializer,
        responses={200: OpenApiTypes.OBJECT}
    )
    def post(self, request):
        principal = _principal(request)
        serializer = CheckPermissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        decision = get_decision_engine().check_permission(
            principal,
            serializer.validated_data['permissions'],
            require_all=serializer.validated_data['require_all'],
        )
        return Response({
            'allowed': decision.allowed,
            'reason': decision.reason,
            'matched': decision.matched,
            'missing': decision.missing,
        })


class PrincipalAssignmentsView(APIView):
    """
    GET  /v1/rbac/principals/{principal_id}/assignments
    POST /v1/rbac/principals/{principal_id}/assignments

    List or grant role assignments of a principal. Grants are
    attempt-limited per caller.

    Required permission: roles.read (GET), roles.assign (POST)
    """

    permission_classes = [HasPermissions]

    @extend_schema(tags=['RBAC'], summary='List role assignments', responses={200: RoleAssignmentSerializer(many=True)})
    @requires_permissions('roles.read')
    def get(self, request, principal_id):
        assignments = (
            RoleAssignment.objects.for_principal(principal_id)
            .prefetch_related('permission_overrides')
        )
        if request.query_params.get('active') == 'true':
            assignments = assignments.current(timezone.now())
        return Response(RoleAssignmentSerializer(assignments, many=True).data)

    @extend_schema(
        tags=['RBAC'],
        summary='Grant role',
        request=GrantRoleSerializer,
        responses={
            201: RoleAssignmentSerializer,
            403: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
            429: OpenApiTypes.OBJECT,
        }
    )
    @requires_permissions('roles.assign')
    def post(self, request, principal_id):
        grantor = _principal(request)
        check_attempt_limit(request, 'role_grant', max_attempts=GRANT_MAX_ATTEMPTS, identity=grantor.id)

        serializer = GrantRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        assignment = RoleAssignmentService.grant_role(
            grantor,
            principal_id,
            data['role'],
            scope={
                'regions': data['regions'],
                'projects': data['projects'],
                'schemes': data['schemes'],
            },
            valid_from=data['valid_from'],
            valid_until=data['valid_until'],
            reason=data['reason'],
        )
        return Response(RoleAssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)


@requires_permissions('roles.assign')
class AssignmentApproveView(APIView):
    """
    POST /v1/rbac/assignments/{assignment_id}/approve

    Approve a pending assignment. The approver must differ from the grantor.
    """

    permission_classes = [HasPermissions]

    @extend_schema(tags=['RBAC'], summary='Approve role assignment', request=None,
                   responses={200: RoleAssignmentSerializer})
    def post(self, request, assignment_id):
        assignment = RoleAssignmentService.approve_assignment(_principal(request), assignment_id)
        return Response(RoleAssignmentSerializer(assignment).data)


@requires_permissions('roles.assign')
class AssignmentRevokeView(APIView):
    """
    POST /v1/rbac/assignments/{assignment_id}/revoke
    """

    permission_classes = [HasPermissions]

    @extend_schema(tags=['RBAC'], summary='Revoke role assignment', request=RevokeRoleSerializer,
                   responses={200: RoleAssignmentSerializer})
    def post(self, request, assignment_id):
        serializer = RevokeRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        assignment = RoleAssignmentService.revoke_role(
            _principal(request),
            assignment_id,
            reason=serializer.validated_data['reason'],
        )
        return Response(RoleAssignmentSerializer(assignment).data)


@requires_permissions('roles.assign')
class AssignmentValidityView(APIView):
    """
    PUT /v1/rbac/assignments/{assignment_id}/validity
    """

    permission_classes = [HasPermissions]

    @extend_schema(tags=['RBAC'], summary='Replace validity window', request=UpdateValiditySerializer,
                   responses={200: RoleAssignmentSerializer})
    def put(self, request, assignment_id):
        serializer = UpdateValiditySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        assignment = RoleAssignmentService.update_validity(
            _principal(request),
            assignment_id,
            serializer.validated_data['valid_from'],
            serializer.validated_data['valid_until'],
        )
        return Response(RoleAssignmentSerializer(assignment).data)


@requires_permissions('permissions.manage')
class AssignmentOverrideView(APIView):
    """
    POST /v1/rbac/assignments/{assignment_id}/overrides

    Add (granted=true) or restrict (granted=false) one permission on an
    assignment.
    """

    permission_classes = [HasPermissions]

    @extend_schema(tags=['RBAC'], summary='Add permission override', request=PermissionOverrideCreateSerializer,
                   responses={201: AssignmentPermissionOverrideSerializer})
    def post(self, request, assignment_id):
        serializer = PermissionOverrideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        override = RoleAssignmentService.add_permission_override(
            _principal(request),
            assignment_id,
            data['permission'],
            data['granted'],
            expires_at=data['expires_at'],
            reason=data['reason'],
        )
        return Response(AssignmentPermissionOverrideSerializer(override).data, status=status.HTTP_201_CREATED)


@requires_permissions('roles.update')
class ExpireAssignmentsView(APIView):
    """
    POST /v1/rbac/assignments/expire

    Run the expiry sweep now instead of waiting for the periodic task.
    """

    permission_classes = [HasPermissions]

    @extend_schema(tags=['RBAC'], summary='Expire lapsed assignments', request=None,
                   responses={200: OpenApiTypes.OBJECT})
    def post(self, request):
        expired = RoleAssignmentService.expire_lapsed_assignments()
        return Response({'expired': expired})
