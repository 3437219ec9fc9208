"""
Input validation helpers shared by services and views.
"""
import uuid
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email

from apps.core.exceptions import ValidationError


def as_uuid(value) -> Optional[uuid.UUID]:
    """
    Coerce value to a UUID, returning None for anything malformed.

    Lookups with a malformed id are answered as "absent" rather than
    raising, so permission checks stay fail-closed.
    """
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return None


def require_uuid(value, field: str) -> uuid.UUID:
    """Coerce value to a UUID or raise ValidationError naming the field."""
    parsed = as_uuid(value)
    if parsed is None:
        raise ValidationError(f"Invalid {field}", details={field: 'Must be a valid UUID'})
    return parsed


def clean_email(value) -> str:
    """Validate and normalize an email address."""
    email = (value or '').strip().lower()
    try:
        validate_email(email)
    except DjangoValidationError:
        raise ValidationError('Invalid email address', details={'email': 'Enter a valid email address'})
    return email
