"""
Caching utilities for frequently accessed data.

Provides centralized cache management with consistent TTLs and invalidation patterns.
"""
import logging
from typing import Any, Callable

from django.conf import settings
from django.core.cache import cache
from django.db import transaction

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Effective permission codes of one user in one clinic
    MEMBER_PERMISSIONS = "rbac:permissions:{clinic_id}:{user_id}"

    # Clinics a user owns or belongs to
    USER_CLINICS = "user:{user_id}:clinics"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    SHORT = 60

    @classmethod
    def permissions(cls) -> int:
        """Permission cache TTL, never above the 60s staleness window."""
        return min(getattr(settings, 'RBAC_PERMISSION_CACHE_TTL', cls.SHORT), cls.SHORT)


class CacheService:
    """Service for managing cached data with consistent patterns."""

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Cache backend errors are logged and treated as a miss.
        """
        try:
            value = cache.get(key, default)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    @staticmethod
    def set(key: str, value: Any, ttl: int = None) -> bool:
        """Set value in cache. Returns False on backend errors."""
        try:
            cache.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    @staticmethod
    def delete(key: str) -> bool:
        """Delete value from cache. Returns False on backend errors."""
        try:
            cache.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False

    @staticmethod
    def get_or_set(key: str, default_func: Callable, ttl: int = None) -> Any:
        """
        Get value from cache or set it using default_func if not found.
        """
        value = CacheService.get(key)
        if value is None:
            value = default_func()
            if value is not None:
                CacheService.set(key, value, ttl)
        return value


class ClinicCacheInvalidator:
    """Utility for invalidating clinic-scoped caches."""

    @staticmethod
    def _delete_now_and_on_commit(key: str):
        # A reader racing the open transaction may repopulate the old value,
        # so the key is dropped again once the write is visible.
        CacheService.delete(key)
        transaction.on_commit(lambda: CacheService.delete(key))

    @staticmethod
    def invalidate_member_permissions(clinic_id, user_id):
        """Invalidate the effective permissions of one membership."""
        ClinicCacheInvalidator._delete_now_and_on_commit(
            CacheKeys.format(CacheKeys.MEMBER_PERMISSIONS, clinic_id=clinic_id, user_id=user_id)
        )
        ClinicCacheInvalidator._delete_now_and_on_commit(
            CacheKeys.format(CacheKeys.USER_CLINICS, user_id=user_id)
        )
        logger.info(
            "Invalidated member permission cache",
            extra={'clinic_id': str(clinic_id), 'user_id': str(user_id)},
        )

    @staticmethod
    def invalidate_user_clinics(user_id):
        """Invalidate the clinic listing of a user."""
        ClinicCacheInvalidator._delete_now_and_on_commit(
            CacheKeys.format(CacheKeys.USER_CLINICS, user_id=user_id)
        )
