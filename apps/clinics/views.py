"""
Clinic API views.
"""
import logging

from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.clinics.models import Clinic
from apps.clinics.serializers import ClinicSerializer
from apps.core.cache import CacheKeys, CacheService, CacheTTL

logger = logging.getLogger(__name__)


@extend_schema_view(
    get=extend_schema(
        tags=['Clinics'],
        summary='List my clinics',
        description='''
Clinics the authenticated user owns or is a member of, ordered by name.
Used by the clinic switcher; send the chosen id as `X-Clinic-ID`.

**No permission required.**
        ''',
        responses={200: ClinicSerializer(many=True)},
    )
)
class ClinicListView(APIView):
    """
    GET /v1/clinics
    """

    def get(self, request):
        user = request.user
        cache_key = CacheKeys.format(CacheKeys.USER_CLINICS, user_id=user.id)

        def load():
            clinics = Clinic.objects.for_user(user)
            return ClinicSerializer(clinics, many=True).data

        data = CacheService.get_or_set(cache_key, load, CacheTTL.SHORT)
        return Response({
            'count': len(data),
            'default_clinic_id': str(user.default_clinic_id) if user.default_clinic_id else None,
            'clinics': data,
        })
