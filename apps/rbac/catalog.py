"""
Role catalog: the static tables behind every authorization decision.

Defines the permission vocabulary, the role -> permission table, the
administrative level hierarchy (state > district > area > unit) and which
roles each role may grant. The tables are immutable at runtime and checked
once at startup by RoleCatalog.validate().
"""
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from apps.core.exceptions import UnknownPermission, UnknownRole

logger = logging.getLogger(__name__)


class Level(str, Enum):
    """Administrative levels, declared top-down."""
    STATE = 'state'
    DISTRICT = 'district'
    AREA = 'area'
    UNIT = 'unit'

    @classmethod
    def ordered(cls) -> List['Level']:
        return list(cls)

    @property
    def rank(self) -> int:
        return Level.ordered().index(self)


# Role tags
SUPER_ADMIN = 'super_admin'
STATE_ADMIN = 'state_admin'
DISTRICT_ADMIN = 'district_admin'
AREA_ADMIN = 'area_admin'
UNIT_ADMIN = 'unit_admin'
PROJECT_COORDINATOR = 'project_coordinator'
SCHEME_COORDINATOR = 'scheme_coordinator'
BENEFICIARY = 'beneficiary'


@dataclass(frozen=True)
class PermissionDefinition:
    """
    A permission name "<resource>.<action>[.<qualifier>]" with its label.

    `scope` documents the reach the permission is meant for (global,
    regional, project, scheme or own); decisions do not read it.
    """
    name: str
    label: str
    scope: str

    @property
    def module(self) -> str:
        return self.name.split('.', 1)[0]


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    label: str
    permissions: FrozenSet[str]
    managed_levels: Tuple[Level, ...]
    manageable_roles: FrozenSet[str]
    is_global: bool = False
    is_administrative: bool = True
    requires_approval: bool = False


def _perm(name, label, scope):
    return PermissionDefinition(name=name, label=label, scope=scope)


PERMISSIONS: Tuple[PermissionDefinition, ...] = (
    # Users
    _perm('users.create', 'Create Users', 'regional'),
    _perm('users.read.all', 'View All Users', 'global'),
    _perm('users.read.regional', 'View Regional Users', 'regional'),
    _perm('users.read.own', 'View Own Profile', 'own'),
    _perm('users.update.all', 'Update All Users', 'global'),
    _perm('users.update.regional', 'Update Regional Users', 'regional'),
    _perm('users.update.own', 'Update Own Profile', 'own'),
    _perm('users.delete', 'Delete Users', 'regional'),
    # Roles and permissions
    _perm('roles.create', 'Create Roles', 'global'),
    _perm('roles.read', 'View Roles', 'global'),
    _perm('roles.update', 'Update Roles', 'global'),
    _perm('roles.delete', 'Delete Roles', 'global'),
    _perm('roles.assign', 'Assign Roles', 'regional'),
    _perm('permissions.read', 'View Permissions', 'global'),
    _perm('permissions.manage', 'Manage Permissions', 'global'),
    # Beneficiaries
    _perm('beneficiaries.create', 'Create Beneficiaries', 'regional'),
    _perm('beneficiaries.read.all', 'View All Beneficiaries', 'global'),
    _perm('beneficiaries.read.regional', 'View Regional Beneficiaries', 'regional'),
    _perm('beneficiaries.read.own', 'View Own Beneficiary Profile', 'own'),
    _perm('beneficiaries.update.regional', 'Update Regional Beneficiaries', 'regional'),
    _perm('beneficiaries.update.own', 'Update Own Beneficiary Profile', 'own'),
    # Applications
    _perm('applications.create', 'Create Applications', 'own'),
    _perm('applications.read.all', 'View All Applications', 'global'),
    _perm('applications.read.regional', 'View Regional Applications', 'regional'),
    _perm('applications.read.own', 'View Own Applications', 'own'),
    _perm('applications.update.regional', 'Update Regional Applications', 'regional'),
    _perm('applications.approve', 'Approve Applications', 'regional'),
    # Projects
    _perm('projects.create', 'Create Projects', 'global'),
    _perm('projects.read.all', 'View All Projects', 'global'),
    _perm('projects.read.assigned', 'View Assigned Projects', 'project'),
    _perm('projects.update.all', 'Update All Projects', 'global'),
    _perm('projects.update.assigned', 'Update Assigned Projects', 'project'),
    _perm('projects.manage', 'Manage Projects', 'global'),
    # Schemes
    _perm('schemes.create', 'Create Schemes', 'global'),
    _perm('schemes.read.all', 'View All Schemes', 'global'),
    _perm('schemes.read.assigned', 'View Assigned Schemes', 'scheme'),
    _perm('schemes.update.assigned', 'Update Assigned Schemes', 'scheme'),
    _perm('schemes.manage', 'Manage Schemes', 'global'),
    # Reports
    _perm('reports.read', 'View Reports', 'regional'),
    _perm('reports.create', 'Create Reports', 'regional'),
    _perm('reports.update', 'Update Reports', 'regional'),
    _perm('reports.delete', 'Delete Reports', 'regional'),
    _perm('reports.read.all', 'View All Reports', 'global'),
    _perm('reports.read.regional', 'View Regional Reports', 'regional'),
    _perm('reports.export', 'Export Reports', 'regional'),
    # Finances, donors and donations
    _perm('finances.read.all', 'View All Financial Data', 'global'),
    _perm('finances.read.regional', 'View Regional Financial Data', 'regional'),
    _perm('finances.manage', 'Manage Finances', 'global'),
    _perm('donors.create', 'Create Donors', 'regional'),
    _perm('donors.read', 'View Donors', 'regional'),
    _perm('donors.read.regional', 'View Regional Donors', 'regional'),
    _perm('donors.read.all', 'View All Donors', 'global'),
    _perm('donors.update.regional', 'Update Regional Donors', 'regional'),
    _perm('donors.delete', 'Delete Donors', 'regional'),
    _perm('donors.verify', 'Verify Donors', 'regional'),
    _perm('donations.create', 'Record Donations', 'regional'),
    _perm('donations.read.all', 'View All Donations', 'global'),
    _perm('donations.read.regional', 'View Regional Donations', 'regional'),
    _perm('donations.update.regional', 'Update Regional Donations', 'regional'),
    # Platform
    _perm('communications.send', 'Send Communications', 'regional'),
    _perm('settings.read', 'View System Settings', 'global'),
    _perm('settings.update', 'Update System Settings', 'global'),
    _perm('audit.read', 'View Audit Logs', 'global'),
    _perm('forms.create', 'Create Forms', 'global'),
    _perm('forms.read', 'View Forms', 'global'),
    _perm('forms.update', 'Update Forms', 'global'),
    _perm('forms.delete', 'Delete Forms', 'global'),
    _perm('forms.manage', 'Manage Forms', 'global'),
    _perm('locations.create', 'Create Locations', 'global'),
    _perm('locations.read', 'View Locations', 'global'),
    _perm('locations.update', 'Update Locations', 'global'),
    _perm('locations.delete', 'Delete Locations', 'global'),
    _perm('dashboard.read.all', 'View All Dashboard Data', 'global'),
    _perm('dashboard.read.regional', 'View Regional Dashboard', 'regional'),
    _perm('system.debug', 'System Debugging', 'global'),
    _perm('system.monitor', 'System Monitoring', 'global'),
    _perm('documents.create', 'Create Documents', 'regional'),
    _perm('documents.read.all', 'View All Documents', 'global'),
    _perm('documents.read.regional', 'View Regional Documents', 'regional'),
    _perm('documents.update', 'Update Documents', 'regional'),
    _perm('documents.delete', 'Delete Documents', 'regional'),
    _perm('interviews.schedule', 'Schedule Interviews', 'regional'),
    _perm('interviews.read', 'View Interviews', 'regional'),
    _perm('interviews.update', 'Update Interviews', 'regional'),
    _perm('interviews.cancel', 'Cancel Interviews', 'regional'),
)

_ALL_PERMISSION_NAMES = frozenset(p.name for p in PERMISSIONS)

_STATE_ADMIN_PERMISSIONS = frozenset({
    'users.create', 'users.read.all', 'users.read.regional', 'users.read.own',
    'users.update.all', 'users.update.regional', 'users.update.own', 'users.delete',
    'roles.create', 'roles.read', 'roles.update', 'roles.delete', 'roles.assign',
    'permissions.read', 'permissions.manage',
    'beneficiaries.create', 'beneficiaries.read.all', 'beneficiaries.read.regional',
    'beneficiaries.read.own', 'beneficiaries.update.regional', 'beneficiaries.update.own',
    'applications.create', 'applications.read.all', 'applications.read.regional',
    'applications.read.own', 'applications.update.regional', 'applications.approve',
    'projects.create', 'projects.read.all', 'projects.read.assigned',
    'projects.update.all', 'projects.update.assigned', 'projects.manage',
    'schemes.create', 'schemes.read.all', 'schemes.read.assigned',
    'schemes.update.assigned', 'schemes.manage',
    'reports.read', 'reports.create', 'reports.update', 'reports.delete',
    'reports.read.all', 'reports.read.regional', 'reports.export',
    'finances.read.all', 'finances.read.regional', 'finances.manage',
    'donors.create', 'donors.read', 'donors.read.all', 'donors.read.regional',
    'donors.update.regional', 'donors.delete', 'donors.verify',
    'donations.create', 'donations.read.all', 'donations.read.regional',
    'donations.update.regional',
    'communications.send', 'settings.read', 'settings.update', 'audit.read',
    'forms.create', 'forms.read', 'forms.update', 'forms.delete', 'forms.manage',
    'locations.create', 'locations.read', 'locations.update', 'locations.delete',
    'dashboard.read.all', 'dashboard.read.regional',
    'system.debug', 'system.monitor',
    'documents.create', 'documents.read.all', 'documents.read.regional',
    'documents.update', 'documents.delete',
    'interviews.schedule', 'interviews.read', 'interviews.update', 'interviews.cancel',
})

_DISTRICT_ADMIN_PERMISSIONS = frozenset({
    'users.create', 'users.read.regional', 'users.update.regional',
    'roles.read', 'roles.assign',
    'beneficiaries.create', 'beneficiaries.read.regional', 'beneficiaries.update.regional',
    'applications.read.regional', 'applications.update.regional', 'applications.approve',
    'projects.read.all', 'projects.read.assigned',
    'schemes.read.all', 'schemes.read.assigned',
    'reports.read.regional', 'reports.export',
    'finances.read.regional',
    'donors.create', 'donors.read', 'donors.read.regional', 'donors.update.regional',
    'donors.verify',
    'donations.create', 'donations.read.regional', 'donations.update.regional',
    'communications.send',
})

_AREA_ADMIN_PERMISSIONS = frozenset({
    'users.create', 'users.read.regional', 'users.update.regional',
    'roles.read', 'roles.assign',
    'beneficiaries.create', 'beneficiaries.read.regional', 'beneficiaries.update.regional',
    'applications.read.regional', 'applications.update.regional', 'applications.approve',
    'projects.read.assigned', 'schemes.read.assigned',
    'reports.read.regional',
    'donors.create', 'donors.read', 'donors.read.regional', 'donors.update.regional',
    'donations.create', 'donations.read.regional', 'donations.update.regional',
    'communications.send',
})

_UNIT_ADMIN_PERMISSIONS = frozenset({
    'users.read.regional', 'roles.read',
    'beneficiaries.create', 'beneficiaries.read.regional', 'beneficiaries.update.regional',
    'applications.read.regional', 'applications.update.regional', 'applications.approve',
    'projects.read.assigned', 'schemes.read.assigned',
    'reports.read.regional',
})

_PROJECT_COORDINATOR_PERMISSIONS = frozenset({
    'users.read.regional', 'beneficiaries.read.regional',
    'applications.read.regional', 'applications.update.regional',
    'projects.read.assigned', 'projects.update.assigned',
    'reports.read.regional',
})

_SCHEME_COORDINATOR_PERMISSIONS = frozenset({
    'users.read.regional', 'beneficiaries.read.regional',
    'applications.read.regional', 'applications.update.regional',
    'schemes.read.assigned', 'schemes.update.assigned',
    'reports.read.regional',
})

_BENEFICIARY_PERMISSIONS = frozenset({
    'users.read.own', 'users.update.own',
    'beneficiaries.read.own', 'beneficiaries.update.own',
    'applications.create', 'applications.read.own',
    'projects.read.assigned', 'schemes.read.assigned',
})

_ALL_LEVELS = (Level.STATE, Level.DISTRICT, Level.AREA, Level.UNIT)

ROLES: Tuple[RoleDefinition, ...] = (
    RoleDefinition(
        name=SUPER_ADMIN,
        label='Super Administrator',
        permissions=_ALL_PERMISSION_NAMES,
        managed_levels=_ALL_LEVELS,
        manageable_roles=frozenset({
            SUPER_ADMIN, STATE_ADMIN, DISTRICT_ADMIN, AREA_ADMIN, UNIT_ADMIN,
            PROJECT_COORDINATOR, SCHEME_COORDINATOR, BENEFICIARY,
        }),
        is_global=True,
        requires_approval=True,
    ),
    RoleDefinition(
        name=STATE_ADMIN,
        label='State Administrator',
        permissions=_STATE_ADMIN_PERMISSIONS,
        managed_levels=_ALL_LEVELS,
        manageable_roles=frozenset({
            DISTRICT_ADMIN, AREA_ADMIN, UNIT_ADMIN,
            PROJECT_COORDINATOR, SCHEME_COORDINATOR, BENEFICIARY,
        }),
        is_global=True,
        requires_approval=True,
    ),
    RoleDefinition(
        name=DISTRICT_ADMIN,
        label='District Administrator',
        permissions=_DISTRICT_ADMIN_PERMISSIONS,
        managed_levels=(Level.DISTRICT, Level.AREA, Level.UNIT),
        manageable_roles=frozenset({AREA_ADMIN, UNIT_ADMIN, BENEFICIARY}),
        requires_approval=True,
    ),
    RoleDefinition(
        name=AREA_ADMIN,
        label='Area Administrator',
        permissions=_AREA_ADMIN_PERMISSIONS,
        managed_levels=(Level.AREA, Level.UNIT),
        manageable_roles=frozenset({UNIT_ADMIN, BENEFICIARY}),
    ),
    RoleDefinition(
        name=UNIT_ADMIN,
        label='Unit Administrator',
        permissions=_UNIT_ADMIN_PERMISSIONS,
        managed_levels=(Level.UNIT,),
        manageable_roles=frozenset({BENEFICIARY}),
    ),
    RoleDefinition(
        name=PROJECT_COORDINATOR,
        label='Project Coordinator',
        permissions=_PROJECT_COORDINATOR_PERMISSIONS,
        managed_levels=(),
        manageable_roles=frozenset(),
    ),
    RoleDefinition(
        name=SCHEME_COORDINATOR,
        label='Scheme Coordinator',
        permissions=_SCHEME_COORDINATOR_PERMISSIONS,
        managed_levels=(),
        manageable_roles=frozenset(),
    ),
    RoleDefinition(
        name=BENEFICIARY,
        label='Beneficiary',
        permissions=_BENEFICIARY_PERMISSIONS,
        managed_levels=(),
        manageable_roles=frozenset(),
        is_administrative=False,
    ),
)

ROLE_CHOICES = [(role.name, role.label) for role in ROLES]


class RoleCatalog:
    """
    Read-only lookup over role and permission definitions.

    Every lookup by role name raises UnknownRole for a name that is not in
    the catalog; callers decide whether that is a boot failure or a denial.
    """

    def __init__(self, roles: Iterable[RoleDefinition], permissions: Iterable[PermissionDefinition]):
        self._roles: Dict[str, RoleDefinition] = {role.name: role for role in roles}
        self._permissions: Dict[str, PermissionDefinition] = {p.name: p for p in permissions}

    def role(self, name: str) -> RoleDefinition:
        try:
            return self._roles[name]
        except KeyError:
            raise UnknownRole(name) from None

    def roles(self) -> List[str]:
        return list(self._roles)

    def permission_definitions(self) -> List[PermissionDefinition]:
        return list(self._permissions.values())

    def is_known_role(self, name: str) -> bool:
        return name in self._roles

    def is_known_permission(self, name: str) -> bool:
        return name in self._permissions

    def permissions_of(self, role: str) -> FrozenSet[str]:
        return self.role(role).permissions

    def managed_levels_of(self, role: str) -> List[Level]:
        """Levels a role administers, ordered top-down."""
        return list(self.role(role).managed_levels)

    def manageable_roles_of(self, role: str) -> FrozenSet[str]:
        """Roles that a holder of `role` may grant, approve and revoke."""
        return self.role(role).manageable_roles

    def is_global(self, role: str) -> bool:
        return self.role(role).is_global

    def is_administrative(self, role: str) -> bool:
        return self.role(role).is_administrative

    def requires_approval(self, role: str) -> bool:
        return self.role(role).requires_approval

    def validate(self):
        """
        Check the tables for internal consistency.

        Raises:
            UnknownPermission: a role references an undefined permission
            UnknownRole: a role names an undefined role as manageable
            ValueError: managed levels are not ordered top-down
        """
        for role in self._roles.values():
            for permission in sorted(role.permissions):
                if permission not in self._permissions:
                    raise UnknownPermission(permission, details={'role': role.name})

            for managed in sorted(role.manageable_roles):
                if managed not in self._roles:
                    raise UnknownRole(managed, details={'referenced_by': role.name})

            levels = list(role.managed_levels)
            if any(not isinstance(level, Level) for level in levels):
                raise ValueError(f"Role {role.name!r} has a managed level that is not a Level")
            if [level.rank for level in levels] != sorted({level.rank for level in levels}):
                raise ValueError(f"Managed levels of role {role.name!r} are not ordered top-down")

        logger.debug(
            f"Role catalog validated: {len(self._roles)} roles, {len(self._permissions)} permissions"
        )


@lru_cache(maxsize=None)
def default_catalog() -> RoleCatalog:
    """The process-wide catalog built from ROLES and PERMISSIONS."""
    return RoleCatalog(ROLES, PERMISSIONS)


def level_of(value) -> Optional[Level]:
    """Coerce a Level or its string value; None for anything unknown."""
    if isinstance(value, Level):
        return value
    try:
        return Level(value)
    except ValueError:
        return None
