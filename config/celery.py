"""
Celery configuration for Seva ERP.
"""
import os
import logging
from celery import Celery
from celery.signals import task_failure

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('seva')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **extra):
    """Log task failures that happen outside LoggedTask (e.g. on import)."""
    logger.error(
        f"Task failed: {getattr(sender, 'name', sender)}",
        extra={
            'task_id': task_id,
            'task_name': getattr(sender, 'name', None),
            'exception': str(exception)[:500] if exception else None,
        }
    )


def _expiry_sweep_seconds():
    from django.conf import settings
    return float(getattr(settings, 'RBAC_EXPIRY_SWEEP_MINUTES', 60) * 60)


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Deactivate role assignments whose validity window ended
    'expire-role-assignments': {
        'task': 'apps.rbac.tasks.expire_role_assignments',
        'schedule': _expiry_sweep_seconds(),
    },
}

app.conf.timezone = 'UTC'
