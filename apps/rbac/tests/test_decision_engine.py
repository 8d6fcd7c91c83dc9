"""
Tests for permission, resource-scope and admin-hierarchy decisions.
"""
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from apps.core.exceptions import StoreUnavailable, Unauthenticated
from apps.rbac.catalog import Level, PermissionDefinition, RoleCatalog, RoleDefinition
from apps.rbac.services import (
    REASON_BYPASS, REASON_CONFIGURATION_ERROR, REASON_DENIED, REASON_GRANTED,
    REASON_IN_SCOPE, REASON_INACTIVE, REASON_NOT_OWNER, REASON_OUT_OF_SCOPE,
    REASON_OWNER, REASON_STORE_UNAVAILABLE, DecisionEngine,
)
from apps.rbac.stores import AssignmentStore, InMemoryAssignmentStore
from apps.rbac.types import Assignment, Principal, Resource


class _DownStore(AssignmentStore):
    def active_assignments_of(self, principal_id, now):
        raise StoreUnavailable('connection refused')


@pytest.fixture
def security_log():
    with patch('apps.rbac.services.SecurityLogger') as security_logger:
        yield security_logger


class TestGlobalBypass:

    @pytest.mark.parametrize('name', [
        'beneficiaries.read.regional', 'settings.update', 'not.in.any.role', '',
    ])
    def test_global_role_holds_every_string(self, engine, make_principal, name):
        assert engine.has_permission(make_principal('super_admin'), name) is True
        assert engine.has_permission(make_principal('state_admin'), name) is True

    def test_bypass_any_returns_first_name(self, engine, make_principal):
        principal = make_principal('state_admin')
        assert engine.has_any_permission(principal, ['x.read', 'y.read']) == (True, 'x.read')
        assert engine.has_any_permission(principal, []) == (True, None)

    def test_bypass_all_has_nothing_missing(self, engine, make_principal):
        assert engine.has_all_permissions(make_principal('super_admin'), ['x.read', 'y.read']) == (True, [])

    def test_bypass_resource_access(self, engine, make_principal):
        resource = Resource(region_ids={'A9'}, project_id='P9', scheme_id='S9')
        decision = engine.explain_resource_access(make_principal('super_admin'), resource)
        assert decision.allowed
        assert decision.reason == REASON_BYPASS


class TestPermissionChecks:

    def test_assigned_role_permissions(self, engine, make_principal, make_assignment):
        principal = make_principal('district_admin')
        make_assignment(principal, regions={'D1'})

        assert engine.has_permission(principal, 'applications.approve')
        assert not engine.has_permission(principal, 'settings.update')

    def test_primary_role_without_assignment_holds_nothing(self, engine, make_principal):
        assert not engine.has_permission(make_principal('district_admin'), 'applications.approve')

    def test_unknown_permission_is_denied(self, engine, make_principal, make_assignment):
        principal = make_principal('district_admin')
        make_assignment(principal, regions={'D1'})

        decision = engine.check_permission(principal, ['applications.teleport'])
        assert not decision.allowed
        assert decision.reason == REASON_DENIED
        assert decision.missing == ['applications.teleport']

    def test_any_permission_short_circuits(self, engine, make_principal, make_assignment):
        principal = make_principal('unit_admin')
        make_assignment(principal, regions={'U1'})

        assert engine.has_any_permission(
            principal, ['settings.update', 'applications.approve', 'beneficiaries.create']
        ) == (True, 'applications.approve')
        assert engine.has_any_permission(principal, ['settings.update', 'audit.read']) == (False, None)

    def test_all_permissions_reports_missing(self, fixed_now):
        catalog = RoleCatalog(
            [RoleDefinition('reader', 'Reader', frozenset({'a.read'}), (), frozenset())],
            [PermissionDefinition('a.read', 'Read A', 'regional'),
             PermissionDefinition('a.write', 'Write A', 'regional')],
        )
        store = InMemoryAssignmentStore([Assignment(principal_id='p1', role='reader')])
        engine = DecisionEngine(store, catalog, clock=lambda: fixed_now)
        principal = Principal(id='p1', role='reader')

        assert engine.has_all_permissions(principal, ['a.read', 'a.write']) == (False, ['a.write'])
        assert engine.has_all_permissions(principal, ['a.read']) == (True, [])

    def test_expired_assignment_grants_nothing(self, engine, make_principal, make_assignment, fixed_now):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'}, is_active=True, valid_until=fixed_now - timedelta(minutes=1))

        assert not engine.has_permission(principal, 'roles.assign')
        assert not engine.check_resource_access(principal, Resource(region_ids={'A1'}))

    def test_explicit_now_overrides_clock(self, engine, make_principal, make_assignment, fixed_now):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'}, valid_until=fixed_now + timedelta(days=1))

        assert engine.has_permission(principal, 'roles.assign')
        assert not engine.has_permission(principal, 'roles.assign', now=fixed_now + timedelta(days=2))

    def test_granted_decision(self, engine, make_principal, make_assignment):
        principal = make_principal('unit_admin')
        make_assignment(principal, regions={'U1'})

        decision = engine.check_permission(principal, ['roles.read', 'applications.approve'])
        assert decision.allowed
        assert bool(decision) is True
        assert decision.reason == REASON_GRANTED
        assert decision.missing == []


class TestResourceAccess:

    def test_area_admin_scenario(self, engine, make_principal, make_assignment):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'}, projects=(), schemes=(), valid_until=None)

        assert engine.check_resource_access(
            principal, Resource(region_ids={'A1'}, project_id=None, scheme_id='S9')
        ) is True
        assert engine.check_resource_access(principal, Resource(region_ids={'A2'})) is False

    def test_empty_scheme_scope_admits_any_scheme(self, engine, make_principal, make_assignment):
        # Scheme scope is permissive when empty, unlike region and project
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'})

        decision = engine.explain_resource_access(principal, Resource(region_ids={'A1'}, scheme_id='S9'))
        assert decision.allowed
        assert decision.scheme_ok is True

    def test_empty_region_scope_denies_regional_resource(self, engine, make_principal, make_assignment):
        principal = make_principal('scheme_coordinator')
        make_assignment(principal, schemes={'S1'})

        decision = engine.explain_resource_access(principal, Resource(region_ids={'A2'}))
        assert not decision.allowed
        assert decision.region_ok is False
        assert decision.reason == REASON_OUT_OF_SCOPE

    def test_empty_project_scope_denies_project_resource(self, engine, make_principal, make_assignment):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'})

        decision = engine.explain_resource_access(principal, Resource(region_ids={'A1'}, project_id='P1'))
        assert not decision.allowed
        assert decision.project_ok is False

    def test_non_empty_scheme_scope_is_restrictive(self, engine, make_principal, make_assignment):
        principal = make_principal('scheme_coordinator')
        make_assignment(principal, regions={'A1'}, schemes={'S1'})

        assert engine.check_resource_access(principal, Resource(region_ids={'A1'}, scheme_id='S1'))
        assert not engine.check_resource_access(principal, Resource(region_ids={'A1'}, scheme_id='S2'))

    def test_conjunction_of_dimensions(self, engine, make_principal, make_assignment):
        principal = make_principal('project_coordinator')
        make_assignment(principal, regions={'A1'}, projects={'P1'})

        decision = engine.explain_resource_access(principal, Resource(region_ids={'A1'}, project_id='P2'))
        assert decision.region_ok is True
        assert decision.project_ok is False
        assert decision.allowed is False

    def test_resource_without_linkage_is_admitted(self, engine, make_principal, make_assignment):
        principal = make_principal('unit_admin')
        make_assignment(principal, regions={'U1'})

        decision = engine.explain_resource_access(principal, Resource())
        assert decision.allowed
        assert decision.reason == REASON_IN_SCOPE

    def test_any_shared_region_suffices(self, engine, make_principal, make_assignment):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'})

        assert engine.check_resource_access(principal, Resource(region_ids={'D1', 'A1', 'U7'}))

    def test_scope_accumulates_over_assignments(self, engine, make_principal, make_assignment):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'})
        make_assignment(principal, role='unit_admin', regions={'U5'})

        assert engine.check_resource_access(principal, Resource(region_ids={'U5'}))

    def test_beneficiary_owns_own_records(self, engine, make_principal, store):
        principal = make_principal('beneficiary', id='ben-7')
        own = Resource(region_ids={'A1'}, owner_id='ben-7')
        other = Resource(region_ids={'A1'}, owner_id='ben-8')
        unowned = Resource(region_ids={'A1'})

        assert engine.explain_resource_access(principal, own).reason == REASON_OWNER
        assert engine.explain_resource_access(principal, other).reason == REASON_NOT_OWNER
        assert not engine.check_resource_access(principal, unowned)

    def test_beneficiary_does_not_read_the_store(self, catalog, make_principal, fixed_now):
        engine = DecisionEngine(_DownStore(), catalog, clock=lambda: fixed_now)
        principal = make_principal('beneficiary', id='ben-7')

        assert engine.check_resource_access(principal, Resource(owner_id='ben-7'))

    def test_resource_from_business_object(self, engine, make_principal, make_assignment):
        principal = make_principal('district_admin')
        make_assignment(principal, regions={'D1'}, projects={'P1'})
        application = SimpleNamespace(district_id='D1', project_id='P1', scheme_id=None, user_id='ben-1')

        assert engine.check_resource_access(principal, Resource.from_object(application))

    def test_filter_accessible(self, engine, make_principal, make_assignment):
        principal = make_principal('area_admin')
        make_assignment(principal, regions={'A1'})
        items = [
            SimpleNamespace(name='in', area_id='A1'),
            SimpleNamespace(name='out', area_id='A2'),
            SimpleNamespace(name='project', area_id='A1', project_id='P1'),
        ]

        assert [i.name for i in engine.filter_accessible(principal, items)] == ['in']

    def test_filter_accessible_for_beneficiary(self, engine, make_principal):
        principal = make_principal('beneficiary', id='ben-1')
        items = [SimpleNamespace(user_id='ben-1'), SimpleNamespace(user_id='ben-2')]

        assert engine.filter_accessible(principal, items) == [items[0]]


class TestAdminHierarchy:

    def test_unit_admin_does_not_manage_district(self, engine, make_principal):
        assert engine.check_admin_hierarchy(make_principal('unit_admin'), 'district') is False

    def test_district_admin_manages_unit(self, engine, make_principal):
        assert engine.check_admin_hierarchy(make_principal('district_admin'), 'unit') is True
        assert engine.check_admin_hierarchy(make_principal('district_admin'), Level.UNIT) is True

    def test_unknown_level_is_false(self, engine, make_principal):
        assert engine.check_admin_hierarchy(make_principal('super_admin'), 'galaxy') is False

    def test_coordinators_manage_no_level(self, engine, make_principal):
        for level in Level:
            assert not engine.check_admin_hierarchy(make_principal('project_coordinator'), level)

    def test_can_manage_role(self, engine, make_principal):
        assert engine.can_manage_role(make_principal('district_admin'), 'area_admin')
        assert not engine.can_manage_role(make_principal('district_admin'), 'state_admin')
        assert not engine.can_manage_role(make_principal('unit_admin'), 'unit_admin')


class TestFailureSemantics:

    def test_missing_principal_raises(self, engine):
        with pytest.raises(Unauthenticated):
            engine.has_permission(None, 'roles.read')
        with pytest.raises(Unauthenticated):
            engine.check_resource_access(None, Resource())
        with pytest.raises(Unauthenticated):
            engine.check_admin_hierarchy(None, 'unit')

    def test_inactive_principal_is_denied(self, engine, make_principal, make_assignment):
        principal = make_principal('super_admin', is_active=False)

        decision = engine.check_permission(principal, ['roles.read'])
        assert not decision.allowed
        assert decision.reason == REASON_INACTIVE
        assert engine.explain_resource_access(principal, Resource()).reason == REASON_INACTIVE
        assert not engine.check_admin_hierarchy(principal, 'unit')
        assert engine.filter_accessible(principal, [Resource()]) == []

    def test_unknown_primary_role_is_denied_and_logged(self, engine, security_log):
        principal = Principal(id='p1', role='regional_overlord')

        decision = engine.check_permission(principal, ['roles.read'])

        assert not decision.allowed
        assert decision.reason == REASON_CONFIGURATION_ERROR
        security_log.log_configuration_error.assert_called_once()
        assert not engine.check_admin_hierarchy(principal, 'unit')
        assert not engine.check_resource_access(principal, Resource())

    def test_unknown_assignment_role_is_denied(self, engine, make_principal, make_assignment, security_log):
        principal = make_principal('unit_admin')
        make_assignment(principal, role='regional_overlord', regions={'U1'})

        assert not engine.has_permission(principal, 'roles.read')
        security_log.log_configuration_error.assert_called_once()

    def test_store_outage_fails_closed(self, catalog, make_principal, fixed_now, security_log):
        engine = DecisionEngine(_DownStore(), catalog, clock=lambda: fixed_now)
        principal = make_principal('district_admin')

        decision = engine.check_permission(principal, ['roles.read'])
        assert not decision.allowed
        assert decision.reason == REASON_STORE_UNAVAILABLE

        access = engine.explain_resource_access(principal, Resource(region_ids={'D1'}))
        assert not access.allowed
        assert access.reason == REASON_STORE_UNAVAILABLE

        assert engine.filter_accessible(principal, [Resource()]) == []
        assert security_log.log_store_unavailable.call_count == 3

    def test_store_outage_does_not_affect_bypass(self, catalog, make_principal, fixed_now):
        engine = DecisionEngine(_DownStore(), catalog, clock=lambda: fixed_now)
        assert engine.has_permission(make_principal('super_admin'), 'roles.read')

    def test_normal_denial_is_not_a_security_event(self, engine, make_principal, security_log):
        assert not engine.has_permission(make_principal('unit_admin'), 'settings.update')
        security_log.log_configuration_error.assert_not_called()
        security_log.log_store_unavailable.assert_not_called()
