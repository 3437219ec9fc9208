"""
Identity-provider token validation and DRF authentication.

Tokens are issued by an external identity provider; this module only
validates them and maps the subject to a local User. Permission claims
inside a token are never trusted: permissions are always re-resolved
from storage for the active clinic.
"""
import logging
from typing import Any, Dict, Optional

import jwt
from django.conf import settings
from rest_framework.authentication import BaseAuthentication

logger = logging.getLogger(__name__)


class InvalidIdentityToken(Exception):
    """Raised when a bearer token cannot be validated."""


def decode_identity_token(token: str) -> Dict[str, Any]:
    """
    Validate a bearer token and return its claims.

    Raises:
        InvalidIdentityToken: expired, malformed or wrongly signed token
    """
    options = {'require': ['sub', 'exp']}
    audience = getattr(settings, 'JWT_AUDIENCE', None)
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')],
            audience=audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidIdentityToken('Token has expired') from e
    except jwt.InvalidTokenError as e:
        raise InvalidIdentityToken('Invalid token') from e


def get_user_from_token(token: str):
    """
    Return the active User named by the token's subject.

    The verified-email flag from the identity provider is copied onto the
    user so invitation acceptance can rely on it.

    Raises:
        InvalidIdentityToken: bad token or unknown/inactive user
    """
    from apps.rbac.models import User

    claims = decode_identity_token(token)
    try:
        user = User.objects.get(id=claims['sub'], is_active=True)
    except (User.DoesNotExist, ValueError, TypeError):
        raise InvalidIdentityToken('Unknown user')

    verified = claims.get('email_verified')
    email = claims.get('email')
    if verified and email and User.objects.normalize_email(email) == user.email and not user.email_verified:
        user.email_verified = True
        user.save(update_fields=['email_verified', 'updated_at'])

    return user


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the token part of an 'Authorization: Bearer <token>' header."""
    if not header:
        return None
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None
    return parts[1]


class MiddlewareAuthentication(BaseAuthentication):
    """
    DRF authentication class that uses the user set by ClinicContextMiddleware.

    The middleware validates the bearer token and sets request.user; this
    class simply hands that user to DRF.
    """

    def authenticate(self, request):
        django_request = request._request

        if hasattr(django_request, 'user') and django_request.user and django_request.user.is_authenticated:
            return (django_request.user, None)

        return None

    def authenticate_header(self, request):
        return 'Bearer'
