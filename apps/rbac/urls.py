"""
RBAC API URLs.

Provides endpoints for:
- Catalog inspection (roles, permissions)
- Caller access introspection
- Role assignment lifecycle
"""
from django.urls import path
from apps.rbac.views import (
    RoleListView,
    PermissionListView,
    MyAccessView,
    CheckPermissionView,
    PrincipalAssignmentsView,
    AssignmentApproveView,
    AssignmentRevokeView,
    AssignmentValidityView,
    AssignmentOverrideView,
    ExpireAssignmentsView,
)

app_name = 'rbac'

urlpatterns = [
    # Catalog
    path('roles', RoleListView.as_view(), name='role-list'),
    path('permissions', PermissionListView.as_view(), name='permission-list'),

    # Caller access
    path('access/me', MyAccessView.as_view(), name='access-me'),
    path('access/check', CheckPermissionView.as_view(), name='access-check'),

    # Assignments
    path('principals/<str:principal_id>/assignments', PrincipalAssignmentsView.as_view(), name='principal-assignments'),
    path('assignments/expire', ExpireAssignmentsView.as_view(), name='assignment-expire'),
    path('assignments/<uuid:assignment_id>/approve', AssignmentApproveView.as_view(), name='assignment-approve'),
    path('assignments/<uuid:assignment_id>/revoke', AssignmentRevokeView.as_view(), name='assignment-revoke'),
    path('assignments/<uuid:assignment_id>/validity', AssignmentValidityView.as_view(), name='assignment-validity'),
    path('assignments/<uuid:assignment_id>/overrides', AssignmentOverrideView.as_view(), name='assignment-overrides'),
]
