"""
Value types consumed by the authorization engine.

Principal, Assignment and Resource are immutable snapshots; the engine
never writes to them. Identifiers are normalised to strings so UUIDs from
the ORM and ids from request payloads compare equal.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, FrozenSet, Iterable, Optional

APPROVAL_PENDING = 'pending'
APPROVAL_APPROVED = 'approved'
APPROVAL_REJECTED = 'rejected'
APPROVAL_REVOKED = 'revoked'


def _as_id(value) -> Optional[str]:
    if value is None or value == '':
        return None
    if hasattr(value, 'id') and not isinstance(value, (str, int)):
        value = value.id
    return None if value is None else str(value)


def _as_id_set(values: Optional[Iterable]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    if isinstance(values, (str, int)):
        values = [values]
    return frozenset(i for i in (_as_id(v) for v in values) if i is not None)


@dataclass(frozen=True)
class Principal:
    """The authenticated actor. `role` is the primary role tag."""
    id: str
    role: str
    is_active: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'id', str(self.id))


@dataclass(frozen=True)
class Assignment:
    """
    One role assignment of a principal, with its scope and validity window.

    extra_permissions / restricted_permissions are the assignment's
    unexpired permission overrides.
    """
    principal_id: str
    role: str
    regions: FrozenSet[str] = frozenset()
    projects: FrozenSet[str] = frozenset()
    schemes: FrozenSet[str] = frozenset()
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    approval_status: str = APPROVAL_APPROVED
    extra_permissions: FrozenSet[str] = frozenset()
    restricted_permissions: FrozenSet[str] = frozenset()
    id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'principal_id', str(self.principal_id))
        for name in ('regions', 'projects', 'schemes'):
            object.__setattr__(self, name, _as_id_set(getattr(self, name)))
        for name in ('extra_permissions', 'restricted_permissions'):
            object.__setattr__(self, name, frozenset(getattr(self, name) or ()))
        if self.id is not None:
            object.__setattr__(self, 'id', str(self.id))

    def is_current(self, now: datetime) -> bool:
        """Active, approved, and inside its validity window at `now`."""
        if not self.is_active or self.approval_status != APPROVAL_APPROVED:
            return False
        if self.valid_from is not None and self.valid_from > now:
            return False
        if self.valid_until is not None and self.valid_until <= now:
            return False
        return True


@dataclass(frozen=True)
class Resource:
    """Region, project, scheme and owner linkage of a business object."""
    region_ids: FrozenSet[str] = field(default_factory=frozenset)
    project_id: Optional[str] = None
    scheme_id: Optional[str] = None
    owner_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'region_ids', _as_id_set(self.region_ids))
        for name in ('project_id', 'scheme_id', 'owner_id'):
            object.__setattr__(self, name, _as_id(getattr(self, name)))

    @classmethod
    def from_object(cls, obj: Any) -> 'Resource':
        """
        Extract linkage from a beneficiary, application or similar record.

        Regions come from `region_ids` or the state/district/area/unit
        attributes; project, scheme and owner from `<name>_id` or `<name>`.
        """
        if isinstance(obj, Resource):
            return obj

        regions = set(_as_id_set(getattr(obj, 'region_ids', None)))
        for level in ('state', 'district', 'area', 'unit'):
            region = _as_id(getattr(obj, f'{level}_id', None)) or _as_id(getattr(obj, level, None))
            if region is not None:
                regions.add(region)

        def linked(name):
            return _as_id(getattr(obj, f'{name}_id', None)) or _as_id(getattr(obj, name, None))

        return cls(
            region_ids=frozenset(regions),
            project_id=linked('project'),
            scheme_id=linked('scheme'),
            owner_id=linked('owner') or _as_id(getattr(obj, 'user_id', None)),
        )

    def describe(self) -> dict:
        return {
            'region_ids': sorted(self.region_ids),
            'project_id': self.project_id,
            'scheme_id': self.scheme_id,
            'owner_id': self.owner_id,
        }


def principal_from_request(request) -> Optional[Principal]:
    """
    Build the acting Principal for a request.

    Authentication runs upstream; it either sets `request.principal` or an
    authenticated `request.user` exposing `id`, `role` and `is_active`.
    """
    principal = getattr(request, 'principal', None)
    if isinstance(principal, Principal):
        return principal

    user = getattr(request, 'user', None)
    if user is None or not getattr(user, 'is_authenticated', False):
        return None

    role = getattr(user, 'role', None)
    if not role:
        return None

    return Principal(id=str(user.id), role=role, is_active=getattr(user, 'is_active', True))
