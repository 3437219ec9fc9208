"""
Domain exceptions and the DRF exception handler.

Every business-rule failure raised by the authorization engine is a
ClinicAuthzException subclass carrying a stable HTTP-equivalent status.
The handler below turns them (and DRF's own exceptions) into a single
error envelope without leaking storage details.
"""
import logging

import sentry_sdk
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ClinicAuthzException(Exception):
    """Base exception for authorization engine errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'ERROR'
    default_message = 'Request could not be processed'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class Unauthorized(ClinicAuthzException):
    """No identity was presented."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = 'UNAUTHORIZED'
    default_message = 'Authentication required'


class Forbidden(ClinicAuthzException):
    """Identity known, but the permission or role relationship is insufficient."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'FORBIDDEN'
    default_message = 'You do not have permission to perform this action'


class NotFound(ClinicAuthzException):
    """Role, invitation or membership is absent."""
    status_code = status.HTTP_404_NOT_FOUND
    code = 'NOT_FOUND'
    default_message = 'Not found'


class Conflict(ClinicAuthzException):
    """Duplicate membership or double accept."""
    status_code = status.HTTP_409_CONFLICT
    code = 'CONFLICT'
    default_message = 'Resource already exists'


class InvalidState(ClinicAuthzException):
    """Transition attempted from a terminal state."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'INVALID_STATE'
    default_message = 'Operation is not valid in the current state'


class InvalidMove(InvalidState):
    """Reorder would move a role past either end of the ordering."""
    code = 'INVALID_MOVE'
    default_message = 'Cannot move role in that direction'


class ValidationError(ClinicAuthzException):
    """Malformed direction, ids or payload."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'VALIDATION_ERROR'
    default_message = 'Invalid input'


class TransientStorageError(ClinicAuthzException):
    """Storage timed out or lost a serialization race; safe to retry later."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = 'TRANSIENT_STORAGE_ERROR'
    default_message = 'The service is temporarily unavailable, please retry'


class ConcurrentUpdate(TransientStorageError):
    """Rows changed between read and lock."""
    code = 'CONCURRENT_UPDATE'
    default_message = 'Concurrent modification detected'


def _error_body(code, message, details=None, request_id=None):
    body = {
        'error': {
            'code': code,
            'message': message,
            'details': details or {},
        }
    }
    if request_id:
        body['request_id'] = request_id
    return body


def custom_exception_handler(exc, context):
    """
    Map domain and DRF exceptions to a consistent error envelope.

    Unexpected exceptions become a generic 500 and are reported to Sentry.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'exception': exc.__class__.__name__,
    }

    if isinstance(exc, ClinicAuthzException):
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(level, f"Domain error: {exc.code} - {exc.message}", extra=log_extra)
        return Response(
            _error_body(exc.code, exc.message, exc.details, request_id),
            status=exc.status_code,
        )

    # Let DRF translate Http404, PermissionDenied and APIException first
    response = exception_handler(exc, context)

    if response is None:
        logger.error(f"API Exception: {exc.__class__.__name__}", extra=log_extra, exc_info=True)
        sentry_sdk.capture_exception(exc)
        return Response(
            _error_body('INTERNAL_ERROR', 'An unexpected error occurred', request_id=request_id),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, (Http404, drf_exceptions.NotFound)):
        code = 'NOT_FOUND'
    elif isinstance(exc, (DjangoPermissionDenied, drf_exceptions.PermissionDenied)):
        code = 'FORBIDDEN'
    elif isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        code = 'UNAUTHORIZED'
    elif isinstance(exc, drf_exceptions.ValidationError):
        code = 'VALIDATION_ERROR'
    else:
        code = getattr(exc, 'default_code', 'ERROR').upper()

    if isinstance(exc, drf_exceptions.ValidationError):
        message = 'Invalid input'
        details = response.data
    else:
        message = str(response.data.get('detail', exc)) if isinstance(response.data, dict) else str(exc)
        details = {}

    logger.info(f"API error: {code}", extra=log_extra)
    response.data = _error_body(code, message, details, request_id)
    return response
