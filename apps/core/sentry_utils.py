"""
Sentry utilities for adding context and breadcrumbs.
"""
import sentry_sdk
from django.conf import settings


def _enabled():
    return bool(getattr(settings, 'SENTRY_DSN', None))


def set_clinic_context(clinic_id, membership=None):
    """
    Set active clinic context in Sentry for error tracking.

    Args:
        clinic_id: Active clinic id (or None)
        membership: Optional ClinicMember of the acting user
    """
    if not _enabled() or clinic_id is None:
        return

    sentry_sdk.set_context("clinic", {
        "id": str(clinic_id),
        "role": membership.role.name if membership else None,
    })
    sentry_sdk.set_tag("clinic_id", str(clinic_id))


def set_user_context(user):
    """
    Set user context in Sentry. Only the id is sent, never the email.
    """
    if not _enabled():
        return

    sentry_sdk.set_user({"id": str(user.id)})


def add_breadcrumb(category, message, level="info", data=None):
    """
    Add a breadcrumb to Sentry for debugging.

    Args:
        category: Category of the breadcrumb (e.g., "task", "invitation")
        message: Human-readable message
        level: Severity level (debug, info, warning, error)
        data: Optional dictionary of additional data
    """
    if not _enabled():
        return

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )


def capture_exception(exception, **kwargs):
    """
    Capture an exception in Sentry with optional context.
    """
    if not _enabled():
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_exception(exception)
