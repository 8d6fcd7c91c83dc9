"""
Periodic RBAC maintenance tasks.
"""
import logging
from celery import shared_task

from apps.core.tasks import LoggedTask
from apps.rbac.services import RoleAssignmentService

logger = logging.getLogger(__name__)


@shared_task(base=LoggedTask, name='apps.rbac.tasks.expire_role_assignments')
def expire_role_assignments():
    """
    Deactivate role assignments whose validity window has ended.

    Scheduled by Celery beat every RBAC_EXPIRY_SWEEP_MINUTES.

    Returns:
        dict: number of assignments deactivated
    """
    expired = RoleAssignmentService.expire_lapsed_assignments()
    return {'expired': expired}
