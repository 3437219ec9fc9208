"""
Base Celery task class with logging and Sentry integration.
"""
import logging
from celery import Task
from apps.core.sentry_utils import add_breadcrumb, capture_exception

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class that logs start, completion, failure and retries,
    and reports failures to Sentry.
    """

    SENSITIVE_KEYS = {'password', 'token', 'secret', 'email', 'body'}

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
            capture_exception(exc, task={'task_id': task_id, 'task_name': task_name})
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={'task_id': task_id, 'task_name': task_name}
        )
        return result

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task retry: {self.name} (attempt {self.request.retries}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'exception': str(exc),
            }
        )
        add_breadcrumb(
            category="task",
            message=f"Task retry: {self.name}",
            level="warning",
            data={'task_id': task_id, 'retry_count': self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _sanitize_kwargs(self, kwargs):
        if not kwargs:
            return {}
        return {
            key: '********' if key.lower() in self.SENSITIVE_KEYS else value
            for key, value in kwargs.items()
        }
