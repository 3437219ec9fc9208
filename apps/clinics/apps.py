"""
Clinics app configuration.
"""
from django.apps import AppConfig


class ClinicsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.clinics'
    verbose_name = 'Clinics'

    def ready(self):
        """Import signals when app is ready."""
        import apps.clinics.signals  # noqa
