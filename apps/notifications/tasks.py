"""
Celery tasks for notification delivery.
"""
import logging

from celery import shared_task

from apps.core.tasks import LoggedTask
from apps.notifications.models import Notification
from apps.rbac.models import User

logger = logging.getLogger(__name__)


@shared_task(bind=True, base=LoggedTask, max_retries=3, default_retry_delay=30)
def deliver_notification(self, user_id, title, body, kind):
    """
    Persist a notification for user_id.

    Returns:
        dict: Result with status and the notification id
    """
    if not User.objects.filter(id=user_id).exists():
        logger.warning(f"Notification recipient {user_id} not found, dropping")
        return {'status': 'skipped', 'reason': 'recipient_not_found'}

    try:
        notification = Notification.objects.create(
            user_id=user_id,
            title=title,
            body=body,
            kind=kind,
        )
    except Exception as exc:
        raise self.retry(exc=exc)

    logger.info(
        f"Notification {kind} delivered",
        extra={'notification_id': str(notification.id), 'user_id': str(user_id)},
    )
    return {'status': 'delivered', 'notification_id': str(notification.id)}
