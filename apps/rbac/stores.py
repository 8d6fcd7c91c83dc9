"""
Query-only access to a principal's currently active role assignments.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, List

from django.db import DatabaseError

from apps.core.exceptions import StoreUnavailable
from apps.rbac.models import RoleAssignment
from apps.rbac.types import Assignment

logger = logging.getLogger(__name__)


class AssignmentStore(ABC):
    """
    Source of role assignments for the scope resolver.

    Implementations return only assignments that are currently active at
    `now`, with permission overrides already filtered for expiry, and an
    empty list for principals they do not know.
    """

    @abstractmethod
    def active_assignments_of(self, principal_id: str, now: datetime) -> List[Assignment]:
        """Raises StoreUnavailable when the backing storage cannot be read."""


class DjangoAssignmentStore(AssignmentStore):
    """Assignments read from the RoleAssignment table."""

    def active_assignments_of(self, principal_id: str, now: datetime) -> List[Assignment]:
        try:
            rows = list(
                RoleAssignment.objects
                .for_principal(principal_id)
                .current(now)
                .prefetch_related('permission_overrides')
            )
        except DatabaseError as e:
            logger.error(
                f"Role assignment query failed for principal {principal_id}",
                extra={'principal_id': str(principal_id)},
                exc_info=True
            )
            raise StoreUnavailable(
                'Role assignments could not be read',
                details={'principal_id': str(principal_id)}
            ) from e

        return [row.to_assignment(now) for row in rows]


class InMemoryAssignmentStore(AssignmentStore):
    """
    Process-local store for tests and callers without a database.

    The current-activity filter is applied at read time, so assignments
    added with a validity window expire on their own.
    """

    def __init__(self, assignments=None):
        self._lock = threading.Lock()
        self._by_principal: Dict[str, List[Assignment]] = defaultdict(list)
        for assignment in assignments or ():
            self.add(assignment)

    def add(self, assignment: Assignment) -> Assignment:
        with self._lock:
            self._by_principal[assignment.principal_id].append(assignment)
        return assignment

    def remove_all_for(self, principal_id: str):
        with self._lock:
            self._by_principal.pop(str(principal_id), None)

    def clear(self):
        with self._lock:
            self._by_principal.clear()

    def active_assignments_of(self, principal_id: str, now: datetime) -> List[Assignment]:
        with self._lock:
            assignments = list(self._by_principal.get(str(principal_id), ()))
        return [a for a in assignments if a.is_current(now)]
