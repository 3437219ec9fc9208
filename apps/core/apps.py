from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security-relevant configuration when Django initializes.
        """
        self._validate_jwt_configuration()
        self._validate_cache_configuration()

    def _validate_jwt_configuration(self):
        """The identity-provider key must be set and distinct from SECRET_KEY."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set to the identity provider's signing key."
            )

        if jwt_secret == settings.SECRET_KEY:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be different from SECRET_KEY."
            )

        if not settings.DEBUG and len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

    def _validate_cache_configuration(self):
        ttl = getattr(settings, 'RBAC_PERMISSION_CACHE_TTL', 60)
        if ttl > 60:
            logger.warning(
                f"RBAC_PERMISSION_CACHE_TTL={ttl}s exceeds the 60s staleness window; 60s will be used"
            )
