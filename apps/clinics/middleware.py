"""
Clinic context middleware.

Validates the identity provider's bearer token, sets request.user and
resolves the active clinic for the request.
"""
import logging

from django.contrib.auth.models import AnonymousUser
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.clinics.context import CLINIC_HEADER, ClinicContext, resolve_clinic_context
from apps.core.authentication import InvalidIdentityToken, extract_bearer_token, get_user_from_token
from apps.core.middleware import set_log_context
from apps.core.sentry_utils import set_clinic_context, set_user_context

logger = logging.getLogger(__name__)


class ClinicContextMiddleware(MiddlewareMixin):
    """
    Attach request.user and request.clinic_context.

    This middleware:
    1. Validates an 'Authorization: Bearer <token>' header, if present
    2. Sets request.user to the token's user (AnonymousUser otherwise)
    3. Resolves the active clinic from X-Clinic-ID or the user's default
    4. Adds user and clinic to log records and Sentry scope

    Requests without a token continue anonymously; views decide whether
    authentication is required. A token that fails validation is a 401.
    """

    # Paths that never look at credentials
    PUBLIC_PATHS = [
        '/schema',
        '/v1/health',
    ]

    def process_request(self, request):
        if self._is_public_path(request.path):
            request.clinic_context = ClinicContext()
            return None

        token = extract_bearer_token(request.headers.get('Authorization'))
        if token is None:
            if not hasattr(request, 'user'):
                request.user = AnonymousUser()
            request.clinic_context = ClinicContext()
            return None

        try:
            user = get_user_from_token(token)
        except InvalidIdentityToken as e:
            logger.warning(
                f"Rejected bearer token: {e}",
                extra={'request_id': getattr(request, 'request_id', None), 'path': request.path},
            )
            return self._error_response('UNAUTHORIZED', str(e), status=401)

        request.user = user
        context = resolve_clinic_context(user, request.headers.get(CLINIC_HEADER))
        request.clinic_context = context

        set_log_context(
            user_id=str(user.id),
            clinic_id=str(context.active_clinic_id) if context.active_clinic_id else None,
        )
        set_user_context(user)
        set_clinic_context(context.active_clinic_id, context.membership)

        logger.debug(
            "Clinic context set",
            extra={'clinic_id': str(context.active_clinic_id) if context.active_clinic_id else None},
        )
        return None

    def _is_public_path(self, path):
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    def _error_response(self, code, message, status=400, details=None):
        """Generate standardized error response."""
        error_data = {
            'error': {
                'code': code,
                'message': message,
                'details': details or {},
            }
        }
        response = JsonResponse(error_data, status=status)
        if status == 401:
            response['WWW-Authenticate'] = 'Bearer'
        return response
