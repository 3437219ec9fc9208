"""
Clinic serializers.
"""
from rest_framework import serializers

from apps.clinics.models import Clinic


class ClinicSerializer(serializers.ModelSerializer):
    """Clinic as seen by one of its members."""

    owner_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Clinic
        fields = ['id', 'name', 'owner_id', 'address', 'city', 'is_active', 'created_at']
        read_only_fields = fields
