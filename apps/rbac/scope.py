"""
Effective permissions and effective scope of a principal.

Global roles resolve to the ALL_PERMISSIONS / UNRESTRICTED sentinels
without touching the assignment store. Everyone else gets the union over
their currently active assignments.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Iterable, List, Union

from apps.rbac.catalog import RoleCatalog
from apps.rbac.stores import AssignmentStore
from apps.rbac.types import Assignment, Principal


class AllPermissions:
    """Permission set that contains every string."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __contains__(self, item) -> bool:
        return True

    def __repr__(self):
        return 'ALL_PERMISSIONS'


class Unrestricted:
    """Scope that covers every region, project and scheme."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'UNRESTRICTED'


ALL_PERMISSIONS = AllPermissions()
UNRESTRICTED = Unrestricted()


@dataclass(frozen=True)
class ScopeSet:
    """Deduplicated region, project and scheme ids a principal may reach."""
    regions: FrozenSet[str] = frozenset()
    projects: FrozenSet[str] = frozenset()
    schemes: FrozenSet[str] = frozenset()

    @classmethod
    def union_of(cls, assignments: Iterable[Assignment]) -> 'ScopeSet':
        regions, projects, schemes = set(), set(), set()
        for assignment in assignments:
            regions |= assignment.regions
            projects |= assignment.projects
            schemes |= assignment.schemes
        return cls(frozenset(regions), frozenset(projects), frozenset(schemes))

    def is_empty(self) -> bool:
        return not (self.regions or self.projects or self.schemes)

    def to_dict(self) -> dict:
        return {
            'regions': sorted(self.regions),
            'projects': sorted(self.projects),
            'schemes': sorted(self.schemes),
        }


PermissionSet = Union[FrozenSet[str], AllPermissions]
EffectiveScope = Union[ScopeSet, Unrestricted]


@dataclass(frozen=True)
class ResolvedAccess:
    permissions: PermissionSet
    scope: EffectiveScope
    assignments: List[Assignment]


class ScopeResolver:
    """
    Combines catalog and store into effective permissions and scope.

    Raises UnknownRole when a principal or assignment carries a role the
    catalog does not define, and StoreUnavailable when the store fails.
    """

    def __init__(self, store: AssignmentStore, catalog: RoleCatalog):
        self.store = store
        self.catalog = catalog

    def effective_permissions(self, principal: Principal, now: datetime) -> PermissionSet:
        if self.catalog.is_global(principal.role):
            return ALL_PERMISSIONS
        return self._permissions_from(self.store.active_assignments_of(principal.id, now))

    def effective_scope(self, principal: Principal, now: datetime) -> EffectiveScope:
        if self.catalog.is_global(principal.role):
            return UNRESTRICTED
        return ScopeSet.union_of(self.store.active_assignments_of(principal.id, now))

    def resolve(self, principal: Principal, now: datetime) -> ResolvedAccess:
        """Permissions and scope from a single store read."""
        if self.catalog.is_global(principal.role):
            return ResolvedAccess(ALL_PERMISSIONS, UNRESTRICTED, [])
        assignments = self.store.active_assignments_of(principal.id, now)
        return ResolvedAccess(
            permissions=self._permissions_from(assignments),
            scope=ScopeSet.union_of(assignments),
            assignments=assignments,
        )

    def _permissions_from(self, assignments: Iterable[Assignment]) -> FrozenSet[str]:
        # Restrictions remove permissions from their own assignment only
        granted = set()
        for assignment in assignments:
            permissions = set(self.catalog.permissions_of(assignment.role))
            permissions |= assignment.extra_permissions
            permissions -= assignment.restricted_permissions
            granted |= permissions
        return frozenset(granted)
