"""
Notification sender used by the authorization engine.
"""
import logging

from apps.notifications.tasks import deliver_notification

logger = logging.getLogger(__name__)


def notify(user_id, title, body, kind):
    """
    Queue a notification for user_id. Fire-and-forget.

    Enqueue failures are logged and never propagated to the caller.
    """
    try:
        deliver_notification.delay(str(user_id), title, body, kind)
    except Exception:
        logger.error(
            f"Failed to queue {kind} notification",
            extra={'user_id': str(user_id), 'kind': kind},
            exc_info=True,
        )
        return False
    return True
