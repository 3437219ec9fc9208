"""
Core API views.
"""
import logging

from django.core.cache import cache
from django.db import connection
from drf_spectacular.utils import extend_schema, inline_serializer
from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

logger = logging.getLogger(__name__)

HEALTH_PROBE_KEY = 'health:probe'


def probe_database():
    """Return an error string, or None when the database answers."""
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
    except Exception:
        logger.error("Database health check failed", exc_info=True)
        return "Database: unreachable"
    return None


def probe_cache():
    """Return an error string, or None when a written key reads back."""
    try:
        cache.set(HEALTH_PROBE_KEY, 'ok', 10)
        readable = cache.get(HEALTH_PROBE_KEY) == 'ok'
    except Exception:
        logger.error("Cache health check failed", exc_info=True)
        return "Cache: unreachable"
    if not readable:
        return "Cache: probe key not readable"
    return None


HealthSerializer = inline_serializer(
    name='Health',
    fields={
        'status': serializers.CharField(),
        'database': serializers.CharField(),
        'cache': serializers.CharField(),
        'errors': serializers.ListField(child=serializers.CharField(), required=False),
    },
)


class HealthCheckView(APIView):
    """
    GET /v1/health

    Unauthenticated. 200 when the database and cache both respond, 503 otherwise.
    """
    authentication_classes = []
    permission_classes = []
    probes = (
        ('database', probe_database),
        ('cache', probe_cache),
    )

    @extend_schema(
        summary="Health check",
        description="Probe the database and cache",
        responses={200: HealthSerializer, 503: HealthSerializer},
    )
    def get(self, request):
        body = {'status': 'healthy'}
        errors = []

        for name, probe in self.probes:
            error = probe()
            body[name] = 'unhealthy' if error else 'healthy'
            if error:
                errors.append(error)

        if not errors:
            return Response(body, status=status.HTTP_200_OK)

        body['status'] = 'unhealthy'
        body['errors'] = errors
        return Response(body, status=status.HTTP_503_SERVICE_UNAVAILABLE)
