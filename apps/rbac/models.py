"""
Persistent role assignments.

Implements:
- RoleAssignment: a principal's role with region/project/scheme scope,
  validity window, approval state and revocation audit fields
- AssignmentPermissionOverride: per-assignment grant or restriction of a
  single permission, optionally expiring

Rows are never physically deleted; revocation flips is_active and stamps
the revoker.
"""
import logging
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel, SoftDeleteQuerySet
from apps.rbac.catalog import ROLE_CHOICES
from apps.rbac.types import (
    APPROVAL_APPROVED, APPROVAL_PENDING, APPROVAL_REJECTED, APPROVAL_REVOKED,
    Assignment,
)

logger = logging.getLogger(__name__)


class RoleAssignmentQuerySet(SoftDeleteQuerySet):
    """Queries over role assignments."""

    def for_principal(self, principal_id):
        return self.filter(principal_id=str(principal_id))

    def current(self, now=None):
        """Assignments that count towards access at `now`."""
        now = now or timezone.now()
        return self.filter(
            is_active=True,
            approval_status=APPROVAL_APPROVED,
        ).filter(
            Q(valid_from__isnull=True) | Q(valid_from__lte=now)
        ).filter(
            Q(valid_until__isnull=True) | Q(valid_until__gt=now)
        )

    def open(self):
        """Assignments that are neither revoked nor rejected."""
        return self.filter(
            is_active=True,
            approval_status__in=[APPROVAL_PENDING, APPROVAL_APPROVED],
        )

    def lapsed(self, now=None):
        """Still-active assignments whose validity window has ended."""
        now = now or timezone.now()
        return self.filter(is_active=True, valid_until__lte=now)

    def pending(self):
        return self.filter(is_active=True, approval_status=APPROVAL_PENDING)


class RoleAssignmentManager(models.Manager.from_queryset(RoleAssignmentQuerySet)):
    """Default manager for RoleAssignment; hides soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class RoleAssignment(BaseModel):
    """
    A role held by a principal within a scope and a validity window.

    A principal may hold several assignments; access is the union over the
    ones that are currently active.
    """

    APPROVAL_CHOICES = [
        (APPROVAL_PENDING, 'Pending'),
        (APPROVAL_APPROVED, 'Approved'),
        (APPROVAL_REJECTED, 'Rejected'),
        (APPROVAL_REVOKED, 'Revoked'),
    ]

    principal_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Opaque id of the principal holding this role"
    )
    role = models.CharField(
        max_length=32,
        choices=ROLE_CHOICES,
        db_index=True,
        help_text="Role tag from the role catalog"
    )

    # Scope
    regions = models.JSONField(
        default=list,
        blank=True,
        help_text="Region ids (state, district, area or unit) this assignment covers"
    )
    projects = models.JSONField(
        default=list,
        blank=True,
        help_text="Project ids this assignment covers"
    )
    schemes = models.JSONField(
        default=list,
        blank=True,
        help_text="Scheme ids this assignment covers"
    )

    # Validity
    valid_from = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Start of validity (null = immediately)"
    )
    valid_until = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="End of validity, exclusive (null = open ended)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="False once revoked or expired"
    )
    approval_status = models.CharField(
        max_length=16,
        choices=APPROVAL_CHOICES,
        default=APPROVAL_APPROVED,
        db_index=True,
        help_text="Only approved assignments grant access"
    )

    # Audit fields
    assigned_by_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Principal who granted this role"
    )
    reason = models.TextField(
        blank=True,
        help_text="Why the role was granted"
    )
    approved_by_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Principal who approved this assignment"
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    revoked_by_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Principal who revoked this assignment"
    )
    revoked_at = models.DateTimeField(null=True, blank=True)
    revocation_reason = models.TextField(blank=True)

    objects = RoleAssignmentManager()

    class Meta:
        db_table = 'role_assignments'
        ordering = ['principal_id', '-created_at']
        indexes = [
            models.Index(fields=['principal_id', 'is_active', 'approval_status']),
            models.Index(fields=['is_active', 'valid_until']),
        ]

    def __str__(self):
        return f"{self.principal_id} -> {self.role} ({self.approval_status})"

    def to_assignment(self, now=None) -> Assignment:
        """
        Snapshot for the engine, with overrides unexpired at `now`.

        Uses prefetched permission_overrides when available.
        """
        now = now or timezone.now()
        extra, restricted = set(), set()
        for override in self.permission_overrides.all():
            if override.expires_at is not None and override.expires_at <= now:
                continue
            (extra if override.granted else restricted).add(override.permission)

        return Assignment(
            id=str(self.id),
            principal_id=self.principal_id,
            role=self.role,
            regions=self.regions or [],
            projects=self.projects or [],
            schemes=self.schemes or [],
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            is_active=self.is_active,
            approval_status=self.approval_status,
            extra_permissions=frozenset(extra),
            restricted_permissions=frozenset(restricted),
        )


class AssignmentPermissionOverride(BaseModel):
    """
    Grant (granted=True) or restrict (granted=False) one permission on top
    of an assignment's role permissions.
    """

    assignment = models.ForeignKey(
        RoleAssignment,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
        help_text="Assignment this override applies to"
    )
    permission = models.CharField(
        max_length=100,
        help_text="Permission name, e.g. beneficiaries.read.regional"
    )
    granted = models.BooleanField(
        help_text="True = add the permission, False = remove it from this assignment"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Override is ignored from this moment on (null = never)"
    )
    reason = models.TextField(blank=True)
    granted_by_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Principal who created this override"
    )

    class Meta:
        db_table = 'assignment_permission_overrides'
        ordering = ['assignment', 'permission']
        indexes = [
            models.Index(fields=['assignment', 'granted']),
        ]

    def __str__(self):
        action = "GRANT" if self.granted else "RESTRICT"
        return f"{action} {self.permission} on {self.assignment_id}"
