"""
Authorization services.

Implements:
- DecisionEngine: permission, resource-scope and admin-hierarchy decisions
- RoleAssignmentService: grant, approve, revoke, re-window and expire role
  assignments, and per-assignment permission overrides

Decisions fail closed. A missing principal raises Unauthenticated; a
catalog inconsistency or an unreadable assignment store is logged through
SecurityLogger and answered with a denial.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import (
    AuthorizationConfigurationError, PermissionDeniedError, RoleAssignmentError,
    StoreUnavailable, Unauthenticated, UnknownPermission, UnknownRole, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.rbac.catalog import RoleCatalog, default_catalog, level_of
from apps.rbac.models import AssignmentPermissionOverride, RoleAssignment
from apps.rbac.scope import UNRESTRICTED, ScopeResolver, ScopeSet
from apps.rbac.stores import AssignmentStore, DjangoAssignmentStore
from apps.rbac.types import (
    APPROVAL_APPROVED, APPROVAL_PENDING, APPROVAL_REVOKED, Principal, Resource,
)

logger = logging.getLogger(__name__)

# Decision reasons
REASON_GRANTED = 'granted'
REASON_BYPASS = 'bypass'
REASON_OWNER = 'owner'
REASON_IN_SCOPE = 'in_scope'
REASON_DENIED = 'denied'
REASON_NOT_OWNER = 'not_owner'
REASON_OUT_OF_SCOPE = 'out_of_scope'
REASON_INACTIVE = 'inactive_principal'
REASON_CONFIGURATION_ERROR = 'configuration_error'
REASON_STORE_UNAVAILABLE = 'store_unavailable'

# Reported in outside_scope when an empty scheme scope exceeds the actor's
ALL_SCHEMES = '*'


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str
    matched: Optional[str] = None
    missing: List[str] = field(default_factory=list)

    def __bool__(self):
        return self.allowed


@dataclass(frozen=True)
class ResourceAccessDecision:
    """Resource decision with the outcome of each scope dimension."""
    allowed: bool
    reason: str
    region_ok: Optional[bool] = None
    project_ok: Optional[bool] = None
    scheme_ok: Optional[bool] = None

    def __bool__(self):
        return self.allowed


class _Unavailable(Exception):
    """Internal: resolution failed and the decision must be a denial."""

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class DecisionEngine:
    """
    Answers "may this principal do X" and "may this principal touch Y".

    Holds no mutable state; every call reads the store afresh, so a revoked
    or expired assignment stops counting immediately.
    """

    def __init__(self, store: AssignmentStore, catalog: Optional[RoleCatalog] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.catalog = catalog or default_catalog()
        self.resolver = ScopeResolver(store, self.catalog)
        self.clock = clock or timezone.now

    # Permission decisions

    def has_permission(self, principal: Principal, name: str, now: Optional[datetime] = None) -> bool:
        return self.check_permission(principal, [name], now=now).allowed

    def has_any_permission(self, principal: Principal, names: List[str],
                           now: Optional[datetime] = None) -> Tuple[bool, Optional[str]]:
        decision = self.check_permission(principal, names, require_all=False, now=now)
        return decision.allowed, decision.matched

    def has_all_permissions(self, principal: Principal, names: List[str],
                            now: Optional[datetime] = None) -> Tuple[bool, List[str]]:
        decision = self.check_permission(principal, names, require_all=True, now=now)
        return decision.allowed, list(decision.missing)

    def check_permission(self, principal: Principal, names: Iterable[str], require_all: bool = True,
                         now: Optional[datetime] = None) -> PermissionDecision:
        """
        Decide a permission check and explain it.

        With require_all, every name must be held and `missing` lists the
        ones that are not. Otherwise the first held name is returned as
        `matched`. Global roles hold every string, defined or not.
        """
        names = list(names)
        self._require_principal(principal)
        if not principal.is_active:
            return PermissionDecision(False, REASON_INACTIVE, missing=names)

        try:
            if self._is_bypass(principal):
                return PermissionDecision(True, REASON_BYPASS, matched=names[0] if names else None)
            held = self._guarded(principal, lambda: self.resolver.effective_permissions(principal, self._now(now)))
        except _Unavailable as e:
            return PermissionDecision(False, e.reason, missing=names)

        def holds(name):
            if not self.catalog.is_known_permission(name):
                logger.debug(
                    f"Permission check for undefined permission {name!r}",
                    extra={'principal_id': principal.id, 'permission': name}
                )
                return False
            return name in held

        if require_all:
            missing = [name for name in names if not holds(name)]
            if missing:
                logger.debug(
                    f"Permission denied for principal {principal.id}: missing {missing}",
                    extra={'principal_id': principal.id, 'role': principal.role, 'missing': missing}
                )
                return PermissionDecision(False, REASON_DENIED, missing=missing)
            return PermissionDecision(True, REASON_GRANTED)

        for name in names:
            if holds(name):
                return PermissionDecision(True, REASON_GRANTED, matched=name)
        logger.debug(
            f"Permission denied for principal {principal.id}: none of {names}",
            extra={'principal_id': principal.id, 'role': principal.role, 'missing': names}
        )
        return PermissionDecision(False, REASON_DENIED, missing=names)

    # Resource decisions

    def check_resource_access(self, principal: Principal, resource: Resource,
                              now: Optional[datetime] = None) -> bool:
        return self.explain_resource_access(principal, resource, now=now).allowed

    def explain_resource_access(self, principal: Principal, resource: Resource,
                                now: Optional[datetime] = None) -> ResourceAccessDecision:
        self._require_principal(principal)
        try:
            early = self._resource_precheck(principal, resource)
            if early is not None:
                return early
            scope = self._guarded(principal, lambda: self.resolver.effective_scope(principal, self._now(now)))
        except _Unavailable as e:
            return ResourceAccessDecision(False, e.reason)
        return self._decide_in_scope(principal, resource, scope)

    def filter_accessible(self, principal: Principal, items: Iterable[Any], now: Optional[datetime] = None,
                          resource_of: Callable[[Any], Resource] = Resource.from_object) -> List[Any]:
        """
        Keep the items the principal may access, reading the store once.

        Args:
            items: business objects or Resource instances
            resource_of: extracts a Resource from an item
        """
        items = list(items)
        self._require_principal(principal)
        try:
            if not principal.is_active:
                return []
            if self._is_bypass(principal):
                return items
            if not self._is_administrative(principal):
                return [item for item in items if self._owns(principal, resource_of(item))]
            scope = self._guarded(principal, lambda: self.resolver.effective_scope(principal, self._now(now)))
        except _Unavailable:
            return []
        return [
            item for item in items
            if self._decide_in_scope(principal, resource_of(item), scope, log=False).allowed
        ]

    # Hierarchy decisions

    def check_admin_hierarchy(self, principal: Principal, target_level) -> bool:
        """True if the principal's role administers `target_level`."""
        self._require_principal(principal)
        if not principal.is_active:
            return False
        level = level_of(target_level)
        if level is None:
            logger.debug(f"Unknown administrative level {target_level!r}")
            return False
        try:
            managed = self.catalog.managed_levels_of(principal.role)
        except UnknownRole as e:
            SecurityLogger.log_configuration_error(e, principal_id=principal.id, role=principal.role)
            return False
        return level in managed

    def can_manage_role(self, principal: Principal, target_role: str) -> bool:
        """True if the principal may grant, approve or revoke `target_role`."""
        self._require_principal(principal)
        if not principal.is_active:
            return False
        try:
            return target_role in self.catalog.manageable_roles_of(principal.role)
        except UnknownRole as e:
            SecurityLogger.log_configuration_error(e, principal_id=principal.id, role=principal.role)
            return False

    # Internals

    def _now(self, now):
        return now if now is not None else self.clock()

    @staticmethod
    def _require_principal(principal):
        if principal is None:
            raise Unauthenticated()

    def _is_bypass(self, principal) -> bool:
        return self._guarded(principal, lambda: self.catalog.is_global(principal.role))

    def _is_administrative(self, principal) -> bool:
        return self._guarded(principal, lambda: self.catalog.is_administrative(principal.role))

    def _guarded(self, principal, resolve):
        try:
            return resolve()
        except AuthorizationConfigurationError as e:
            SecurityLogger.log_configuration_error(e, principal_id=principal.id, role=principal.role)
            raise _Unavailable(REASON_CONFIGURATION_ERROR) from e
        except StoreUnavailable as e:
            SecurityLogger.log_store_unavailable(e, principal_id=principal.id)
            raise _Unavailable(REASON_STORE_UNAVAILABLE) from e

    @staticmethod
    def _owns(principal, resource) -> bool:
        return resource.owner_id is not None and resource.owner_id == principal.id

    def _resource_precheck(self, principal, resource) -> Optional[ResourceAccessDecision]:
        if not principal.is_active:
            return ResourceAccessDecision(False, REASON_INACTIVE)
        if self._is_bypass(principal):
            return ResourceAccessDecision(True, REASON_BYPASS)
        if not self._is_administrative(principal):
            if self._owns(principal, resource):
                return ResourceAccessDecision(True, REASON_OWNER)
            return ResourceAccessDecision(False, REASON_NOT_OWNER)
        return None

    def _decide_in_scope(self, principal, resource, scope, log=True) -> ResourceAccessDecision:
        if scope is UNRESTRICTED:
            return ResourceAccessDecision(True, REASON_BYPASS, True, True, True)

        region_ok = not resource.region_ids or bool(scope.regions & resource.region_ids)
        project_ok = resource.project_id is None or resource.project_id in scope.projects
        # An empty scheme scope admits every scheme while an empty region or
        # project scope admits nothing. Kept as observed in production; see
        # DESIGN.md "Scheme scope default".
        scheme_ok = not scope.schemes or resource.scheme_id in scope.schemes

        allowed = region_ok and project_ok and scheme_ok
        decision = ResourceAccessDecision(
            allowed,
            REASON_IN_SCOPE if allowed else REASON_OUT_OF_SCOPE,
            region_ok, project_ok, scheme_ok,
        )
        if not allowed and log:
            logger.debug(
                f"Resource access denied for principal {principal.id}",
                extra={
                    'principal_id': principal.id,
                    'role': principal.role,
                    'resource': resource.describe(),
                    'region_ok': region_ok,
                    'project_ok': project_ok,
                    'scheme_ok': scheme_ok,
                }
            )
        return decision


_default_engine = None


def get_decision_engine() -> DecisionEngine:
    """The process-wide engine over the database assignment store."""
    global _default_engine
    if _default_engine is None:
        _default_engine = DecisionEngine(DjangoAssignmentStore(), default_catalog())
    return _default_engine


class RoleAssignmentService:
    """
    Lifecycle of role assignments.

    Every mutation is gated by the role-management hierarchy: an actor may
    only touch assignments of roles their own role may manage, and a
    non-global actor may only hand out scope they hold themselves.
    """

    @classmethod
    def _engine(cls, engine):
        return engine or get_decision_engine()

    @classmethod
    def _get_assignment(cls, assignment_id, for_update=False) -> RoleAssignment:
        queryset = RoleAssignment.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(id=assignment_id)
        except (RoleAssignment.DoesNotExist, DjangoValidationError, ValueError):
            raise ValidationError(
                'Role assignment not found',
                details={'assignment_id': str(assignment_id)}
            ) from None

    @classmethod
    def _require_manager(cls, engine, actor: Principal, role: str, principal_id: str, action: str):
        if actor is None:
            raise Unauthenticated()
        if not engine.can_manage_role(actor, role):
            reason = f"{actor.role} may not {action} {role}"
            SecurityLogger.log_role_assignment_rejected(actor.id, principal_id, role, reason)
            raise PermissionDeniedError(
                f"Role {actor.role} is not allowed to {action} role {role}",
                details={'actor_role': actor.role, 'role': role}
            )

    @classmethod
    def _require_within_scope(cls, engine, actor: Principal, scope: ScopeSet, principal_id: str,
                              role: str, now: datetime, message: str):
        """
        Reject `scope` when it reaches beyond the effective scope of a
        non-global actor.

        No scheme scope means every scheme, so it only fits inside an actor
        whose own scheme scope is empty too; it is reported as '*'.
        """
        if engine.catalog.is_global(actor.role):
            return
        actor_scope = engine.resolver.effective_scope(actor, now)
        outside = {
            'regions': sorted(scope.regions - actor_scope.regions),
            'projects': sorted(scope.projects - actor_scope.projects),
            'schemes': sorted(scope.schemes - actor_scope.schemes),
        }
        if actor_scope.schemes and not scope.schemes:
            outside['schemes'] = [ALL_SCHEMES]
        if any(outside.values()):
            SecurityLogger.log_role_assignment_rejected(
                actor.id, principal_id, role, 'scope outside actor scope'
            )
            raise PermissionDeniedError(message, details={'outside_scope': outside})

    @classmethod
    def _require_assignment_in_scope(cls, engine, actor: Principal, assignment: RoleAssignment, now: datetime):
        scope = ScopeSet(
            regions=frozenset(assignment.regions or ()),
            projects=frozenset(assignment.projects or ()),
            schemes=frozenset(assignment.schemes or ()),
        )
        cls._require_within_scope(
            engine, actor, scope, assignment.principal_id, assignment.role, now,
            'Assignment scope lies outside your own scope',
        )

    @staticmethod
    def _check_window(valid_from, valid_until):
        if valid_from is not None and valid_until is not None and valid_until <= valid_from:
            raise ValidationError(
                'valid_until must be later than valid_from',
                details={'valid_from': valid_from.isoformat(), 'valid_until': valid_until.isoformat()}
            )

    @staticmethod
    def _normalise_scope(scope) -> ScopeSet:
        if scope is None:
            return ScopeSet()
        if isinstance(scope, ScopeSet):
            return scope
        if isinstance(scope, dict):
            return ScopeSet(
                regions=frozenset(str(v) for v in scope.get('regions') or ()),
                projects=frozenset(str(v) for v in scope.get('projects') or ()),
                schemes=frozenset(str(v) for v in scope.get('schemes') or ()),
            )
        raise ValidationError('scope must be a ScopeSet or a dict of id lists')

    @classmethod
    @transaction.atomic
    def grant_role(cls, grantor: Principal, principal_id: str, role: str, scope=None,
                   valid_from: Optional[datetime] = None, valid_until: Optional[datetime] = None,
                   reason: str = '', engine: Optional[DecisionEngine] = None) -> RoleAssignment:
        """
        Grant `role` to a principal within `scope`.

        Args:
            grantor: acting principal
            principal_id: principal receiving the role
            role: role tag, must be defined in the catalog
            scope: ScopeSet or {'regions': [...], 'projects': [...], 'schemes': [...]}
            valid_from / valid_until: optional validity window
            reason: free-text justification kept on the assignment

        Returns:
            The new RoleAssignment; pending when the role requires approval.

        Raises:
            UnknownRole, PermissionDeniedError, ValidationError, RoleAssignmentError
        """
        engine = cls._engine(engine)
        catalog = engine.catalog
        principal_id = str(principal_id)
        catalog.role(role)
        cls._require_manager(engine, grantor, role, principal_id, 'grant')
        cls._check_window(valid_from, valid_until)
        scope = cls._normalise_scope(scope)
        now = engine.clock()

        cls._require_within_scope(
            engine, grantor, scope, principal_id, role, now,
            'Cannot grant scope outside your own scope',
        )

        duplicates = (
            RoleAssignment.objects.for_principal(principal_id).open()
            .filter(role=role)
            .exclude(valid_until__lte=now)
        )
        if duplicates.exists():
            raise RoleAssignmentError(
                f"Principal already holds an open {role} assignment",
                details={'principal_id': principal_id, 'role': role}
            )

        status = APPROVAL_PENDING if catalog.requires_approval(role) else APPROVAL_APPROVED
        assignment = RoleAssignment.objects.create(
            principal_id=principal_id,
            role=role,
            regions=sorted(scope.regions),
            projects=sorted(scope.projects),
            schemes=sorted(scope.schemes),
            valid_from=valid_from,
            valid_until=valid_until,
            approval_status=status,
            assigned_by_id=grantor.id,
            reason=reason,
        )

        logger.info(
            f"Role {role} granted to principal {principal_id} ({status})",
            extra={
                'actor_id': grantor.id,
                'principal_id': principal_id,
                'role': role,
                'assignment_id': str(assignment.id),
                'approval_status': status,
            }
        )
        return assignment

    @classmethod
    @transaction.atomic
    def approve_assignment(cls, approver: Principal, assignment_id,
                           engine: Optional[DecisionEngine] = None) -> RoleAssignment:
        """
        Approve a pending assignment.

        Four-eyes: the approver must not be the principal who granted it.
        """
        engine = cls._engine(engine)
        assignment = cls._get_assignment(assignment_id, for_update=True)
        if approver is None:
            raise Unauthenticated()

        if assignment.approval_status != APPROVAL_PENDING or not assignment.is_active:
            raise RoleAssignmentError(
                f"Assignment is {assignment.approval_status}, not pending",
                details={'assignment_id': str(assignment.id)}
            )
        if approver.id == assignment.assigned_by_id:
            SecurityLogger.log_four_eyes_violation(approver.id, str(assignment.id), assignment.role)
            raise PermissionDeniedError(
                'An assignment cannot be approved by the principal who granted it',
                details={'assignment_id': str(assignment.id)}
            )
        cls._require_manager(engine, approver, assignment.role, assignment.principal_id, 'approve')
        now = engine.clock()
        cls._require_assignment_in_scope(engine, approver, assignment, now)

        assignment.approval_status = APPROVAL_APPROVED
        assignment.approved_by_id = approver.id
        assignment.approved_at = now
        assignment.save(update_fields=['approval_status', 'approved_by_id', 'approved_at', 'updated_at'])

        logger.info(
            f"Role assignment {assignment.id} approved",
            extra={
                'actor_id': approver.id,
                'principal_id': assignment.principal_id,
                'role': assignment.role,
                'assignment_id': str(assignment.id),
            }
        )
        return assignment

    @classmethod
    @transaction.atomic
    def revoke_role(cls, revoker: Principal, assignment_id, reason: str = '',
                    engine: Optional[DecisionEngine] = None) -> RoleAssignment:
        """Revoke an assignment; the row is kept for audit."""
        engine = cls._engine(engine)
        assignment = cls._get_assignment(assignment_id, for_update=True)
        cls._require_manager(engine, revoker, assignment.role, assignment.principal_id, 'revoke')
        now = engine.clock()
        cls._require_assignment_in_scope(engine, revoker, assignment, now)

        if not assignment.is_active or assignment.approval_status == APPROVAL_REVOKED:
            raise RoleAssignmentError(
                'Assignment is already inactive',
                details={'assignment_id': str(assignment.id)}
            )

        assignment.is_active = False
        assignment.approval_status = APPROVAL_REVOKED
        assignment.revoked_by_id = revoker.id
        assignment.revoked_at = now
        assignment.revocation_reason = reason
        assignment.save(update_fields=[
            'is_active', 'approval_status', 'revoked_by_id', 'revoked_at',
            'revocation_reason', 'updated_at',
        ])

        logger.info(
            f"Role {assignment.role} revoked from principal {assignment.principal_id}",
            extra={
                'actor_id': revoker.id,
                'principal_id': assignment.principal_id,
                'role': assignment.role,
                'assignment_id': str(assignment.id),
            }
        )
        return assignment

    @classmethod
    @transaction.atomic
    def update_validity(cls, actor: Principal, assignment_id, valid_from: Optional[datetime],
                        valid_until: Optional[datetime],
                        engine: Optional[DecisionEngine] = None) -> RoleAssignment:
        """Replace the validity window of an assignment."""
        engine = cls._engine(engine)
        assignment = cls._get_assignment(assignment_id, for_update=True)
        cls._require_manager(engine, actor, assignment.role, assignment.principal_id, 'update')
        cls._require_assignment_in_scope(engine, actor, assignment, engine.clock())
        cls._check_window(valid_from, valid_until)

        assignment.valid_from = valid_from
        assignment.valid_until = valid_until
        assignment.save(update_fields=['valid_from', 'valid_until', 'updated_at'])

        logger.info(
            f"Validity of role assignment {assignment.id} updated",
            extra={
                'actor_id': actor.id,
                'principal_id': assignment.principal_id,
                'role': assignment.role,
                'assignment_id': str(assignment.id),
                'valid_from': valid_from.isoformat() if valid_from else None,
                'valid_until': valid_until.isoformat() if valid_until else None,
            }
        )
        return assignment

    @classmethod
    @transaction.atomic
    def add_permission_override(cls, actor: Principal, assignment_id, permission: str, granted: bool,
                                expires_at: Optional[datetime] = None, reason: str = '',
                                engine: Optional[DecisionEngine] = None) -> AssignmentPermissionOverride:
        """
        Add or restrict one permission on an assignment.

        Granting requires the actor to hold the permission themselves.

        Raises:
            UnknownPermission: `permission` is not defined in the catalog
        """
        engine = cls._engine(engine)
        if not engine.catalog.is_known_permission(permission):
            raise UnknownPermission(permission)
        assignment = cls._get_assignment(assignment_id)
        cls._require_manager(engine, actor, assignment.role, assignment.principal_id, 'update')
        cls._require_assignment_in_scope(engine, actor, assignment, engine.clock())

        if granted and not engine.has_permission(actor, permission):
            SecurityLogger.log_role_assignment_rejected(
                actor.id, assignment.principal_id, assignment.role,
                f"actor does not hold {permission}"
            )
            raise PermissionDeniedError(
                'Cannot grant a permission you do not hold',
                details={'permission': permission}
            )

        override = AssignmentPermissionOverride.objects.create(
            assignment=assignment,
            permission=permission,
            granted=granted,
            expires_at=expires_at,
            reason=reason,
            granted_by_id=actor.id,
        )

        logger.info(
            f"Permission override {'granted' if granted else 'restricted'}: {permission}",
            extra={
                'actor_id': actor.id,
                'principal_id': assignment.principal_id,
                'role': assignment.role,
                'assignment_id': str(assignment.id),
                'permission': permission,
            }
        )
        return override

    @classmethod
    def expire_lapsed_assignments(cls, now: Optional[datetime] = None) -> int:
        """
        Deactivate assignments whose validity ended at or before `now`.

        Lapsed assignments already stop counting at read time; this sweep
        keeps is_active truthful for listings and reports.

        Returns:
            Number of assignments deactivated
        """
        now = now or timezone.now()
        count = RoleAssignment.objects.lapsed(now).update(is_active=False, updated_at=now)
        if count:
            logger.info(
                f"Expired {count} lapsed role assignments",
                extra={'expired_count': count}
            )
        return count
