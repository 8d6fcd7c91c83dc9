"""
Base Celery task class with logging and Sentry integration.
"""
import logging
from celery import Task
from apps.core.sentry_utils import add_breadcrumb, capture_exception

logger = logging.getLogger(__name__)

SENSITIVE_KWARGS = {'password', 'token', 'secret', 'otp', 'phone', 'email'}


class LoggedTask(Task):
    """
    Base task class that logs start, completion and failure.

    Failures are re-raised after being logged and sent to Sentry.
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        logger.info(
            f"Task started: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'task_kwargs': self._sanitize_kwargs(kwargs),
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task started: {task_name}",
            data={'task_id': task_id},
        )

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            capture_exception(
                exc,
                task={
                    'task_id': task_id,
                    'task_name': task_name,
                    'kwargs': self._sanitize_kwargs(kwargs),
                }
            )
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'result': self._sanitize_result(result),
            }
        )
        return result

    @staticmethod
    def _sanitize_kwargs(kwargs):
        if not kwargs:
            return {}
        return {
            key: '********' if any(s in key.lower() for s in SENSITIVE_KWARGS) else value
            for key, value in kwargs.items()
        }

    @staticmethod
    def _sanitize_result(result):
        if result is None:
            return None
        result_str = str(result)
        if len(result_str) > 200:
            return result_str[:200] + '... (truncated)'
        return result_str
