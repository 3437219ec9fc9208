"""
Pytest configuration and fixtures.
"""
import itertools
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'clinic-tests',
        }
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_BROKER_URL = 'memory://'
    settings.RBAC_RETRY_BASE_DELAY = 0
    settings.SENTRY_DSN = None
    # The test client speaks plain HTTP; production settings redirect it
    settings.SECURE_SSL_REDIRECT = False
    django.setup()

    from config.celery import app as celery_app
    celery_app.conf.task_always_eager = True
    celery_app.conf.broker_url = 'memory://'


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database; apps without migrations are synced."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached permissions must not leak between tests."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for users with a verified email."""
    from apps.rbac.models import User

    counter = itertools.count(1)

    def _make(email=None, verified=True, **extra):
        email = email or f"user{next(counter)}@example.com"
        return User.objects.create_user(email=email, email_verified=verified, **extra)

    return _make


@pytest.fixture
def owner(make_user):
    """Owner of the test clinic."""
    return make_user('owner@riverside.test', first_name='Olive', last_name='Owner')


@pytest.fixture
def clinic(owner):
    """A clinic; creation seeds its default roles and the owner's membership."""
    from apps.clinics.models import Clinic
    return Clinic.objects.create(name='Riverside Clinic', owner=owner, city='Nairobi')


@pytest.fixture
def other_clinic(make_user):
    """Another clinic for isolation tests."""
    from apps.clinics.models import Clinic
    other_owner = make_user('owner@hillside.test')
    return Clinic.objects.create(name='Hillside Clinic', owner=other_owner)


@pytest.fixture
def roles(clinic):
    """Default roles of the test clinic by name."""
    from apps.rbac.models import Role
    return {role.name: role for role in Role.objects.for_clinic(clinic)}


@pytest.fixture
def add_member(clinic, roles, make_user):
    """
    Factory adding a member to the test clinic.

    Usage:
        manager = add_member('CLINIC_MANAGER')
    """
    from apps.rbac.models import ClinicMember

    def _add(role_name, user=None, target_clinic=None):
        target_clinic = target_clinic or clinic
        user = user or make_user()
        if target_clinic == clinic:
            role = roles[role_name]
        else:
            from apps.rbac.models import Role
            role = Role.objects.for_clinic(target_clinic).get(name=role_name)
        return ClinicMember.objects.create(user=user, clinic=target_clinic, role=role)

    return _add


@pytest.fixture
def owner_membership(clinic, owner):
    from apps.rbac.models import ClinicMember
    return ClinicMember.objects.get(user=owner, clinic=clinic)


@pytest.fixture
def make_token():
    """Factory for identity-provider tokens signed with the test key."""

    def _make(user, expires_in=3600, **claims):
        payload = {
            'sub': str(user.id),
            'email': user.email,
            'email_verified': user.email_verified,
            'exp': datetime.now(dt_timezone.utc) + timedelta(seconds=expires_in),
        }
        payload.update(claims)
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    return _make


@pytest.fixture
def client_for(api_client, clinic):
    """
    Return an API client authenticated as user with clinic as active clinic.
    """

    def _client(user, active_clinic=None):
        active_clinic = active_clinic or clinic
        api_client.force_authenticate(user=user)
        api_client.credentials(HTTP_X_CLINIC_ID=str(active_clinic.id))
        return api_client

    return _client
