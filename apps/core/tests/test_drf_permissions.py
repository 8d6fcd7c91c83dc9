"""
Tests for the DRF permission classes and declaration decorators.
"""
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework.views import APIView

from apps.core.permissions import (
    HasPermissions, HasResourceAccess, requires_any_permission, requires_permissions,
)


@pytest.fixture
def permission_classes(engine):
    """HasPermissions / HasResourceAccess bound to the in-memory engine."""
    class EnginePermissions(HasPermissions):
        pass

    class EngineResourceAccess(HasResourceAccess):
        pass

    EnginePermissions.engine = engine
    EngineResourceAccess.engine = engine
    return EnginePermissions, EngineResourceAccess


@pytest.fixture
def call_view(upstream_user):
    factory = APIRequestFactory()

    def _call(view_class, role=None, method='get', principal_id=None, **kwargs):
        request = getattr(factory, method)('/v1/things')
        if role:
            force_authenticate(request, user=upstream_user(role, id=principal_id))
        return view_class.as_view()(request, **kwargs)

    return _call


class TestHasPermissions:

    def test_view_level_requirement(self, permission_classes, call_view, make_principal, make_assignment):
        permissions, _ = permission_classes

        class ApplicationListView(APIView):
            permission_classes = [permissions]
            required_permissions = ['applications.read.regional', 'applications.approve']

            def get(self, request):
                return Response({
                    'checked': request.checked_permissions,
                    'granted': request.granted_permission,
                })

        make_assignment(make_principal('unit_admin'), regions={'U1'})

        response = call_view(ApplicationListView, role='unit_admin')
        assert response.status_code == 200
        assert response.data['checked'] == ['applications.read.regional', 'applications.approve']

        assert call_view(ApplicationListView, role='project_coordinator').status_code == 403

    def test_missing_principal(self, permission_classes, call_view):
        permissions, _ = permission_classes

        class ReportView(APIView):
            permission_classes = [permissions]
            required_permissions = ['reports.read.regional']

            def get(self, request):
                return Response({})

        assert call_view(ReportView).status_code == 401

    def test_no_declaration_allows(self, permission_classes, call_view):
        permissions, _ = permission_classes

        class OpenView(APIView):
            permission_classes = [permissions]

            def get(self, request):
                return Response({})

        assert call_view(OpenView, role='beneficiary').status_code == 200

    def test_method_level_declaration(self, permission_classes, call_view, make_principal, make_assignment):
        permissions, _ = permission_classes

        class DonorView(APIView):
            permission_classes = [permissions]

            @requires_permissions('donors.read')
            def get(self, request):
                return Response({})

            @requires_permissions('donors.delete')
            def delete(self, request):
                return Response(status=204)

        make_assignment(make_principal('area_admin'), regions={'A1'})

        assert call_view(DonorView, role='area_admin').status_code == 200
        assert call_view(DonorView, role='area_admin', method='delete').status_code == 403

    def test_class_decorator_and_any_permission(self, permission_classes, call_view, make_principal,
                                                make_assignment):
        permissions, _ = permission_classes

        @requires_any_permission('projects.update.all', 'projects.update.assigned')
        class ProjectUpdateView(APIView):
            permission_classes = [permissions]

            def get(self, request):
                return Response({'granted': request.granted_permission})

        make_assignment(make_principal('project_coordinator'), projects={'P1'})

        response = call_view(ProjectUpdateView, role='project_coordinator')
        assert response.status_code == 200
        assert response.data['granted'] == 'projects.update.assigned'

        assert call_view(ProjectUpdateView, role='unit_admin').status_code == 403

    def test_denial_is_logged(self, permission_classes, call_view):
        permissions, _ = permission_classes

        class SettingsView(APIView):
            permission_classes = [permissions]
            required_permissions = ['settings.update']

            def get(self, request):
                return Response({})

        with patch('apps.core.permissions.SecurityLogger') as security_logger:
            call_view(SettingsView, role='district_admin', principal_id='d-1')

        kwargs = security_logger.log_permission_denied.call_args.kwargs
        assert kwargs['principal_id'] == 'd-1'
        assert kwargs['permissions'] == ['settings.update']
        assert kwargs['reason'] == 'denied'

    def test_inactive_principal_is_denied(self, permission_classes, upstream_user):
        permissions, _ = permission_classes

        class AuditView(APIView):
            permission_classes = [permissions]
            required_permissions = ['audit.read']

            def get(self, request):
                return Response({})

        request = APIRequestFactory().get('/v1/audit')
        force_authenticate(request, user=upstream_user('super_admin', is_active=False))
        assert AuditView.as_view()(request).status_code == 403


class TestHasResourceAccess:

    def _view(self, resource_access, obj):
        class BeneficiaryDetailView(APIView):
            permission_classes = [resource_access]

            def get(self, request):
                self.check_object_permissions(request, obj)
                return Response({'ok': True})

        return BeneficiaryDetailView

    def test_object_inside_scope(self, permission_classes, call_view, make_principal, make_assignment):
        _, resource_access = permission_classes
        make_assignment(make_principal('area_admin'), regions={'A1'})
        beneficiary = SimpleNamespace(id='b-1', area_id='A1', user_id='ben-1')

        assert call_view(self._view(resource_access, beneficiary), role='area_admin').status_code == 200

    def test_object_outside_scope(self, permission_classes, call_view, make_principal, make_assignment):
        _, resource_access = permission_classes
        make_assignment(make_principal('area_admin'), regions={'A1'})
        beneficiary = SimpleNamespace(id='b-2', area_id='A2', user_id='ben-2')

        with patch('apps.core.permissions.SecurityLogger') as security_logger:
            response = call_view(self._view(resource_access, beneficiary), role='area_admin')

        assert response.status_code == 403
        security_logger.log_resource_access_denied.assert_called_once()

    def test_beneficiary_reads_own_record(self, permission_classes, call_view):
        _, resource_access = permission_classes
        own = SimpleNamespace(id='b-1', area_id='A1', user_id='ben-1')
        other = SimpleNamespace(id='b-2', area_id='A1', user_id='ben-2')

        assert call_view(self._view(resource_access, own), role='beneficiary', principal_id='ben-1').status_code == 200
        assert call_view(self._view(resource_access, other), role='beneficiary', principal_id='ben-1').status_code == 403
