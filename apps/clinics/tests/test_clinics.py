"""
Tests for clinics: setup on creation, active clinic context and the
clinic switcher endpoint.
"""
import uuid
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory
from rest_framework import status

from apps.clinics.context import ClinicContext, clinic_context_for, resolve_clinic_context
from apps.clinics.middleware import ClinicContextMiddleware
from apps.clinics.models import Clinic
from apps.rbac.models import AuditLog, ClinicMember, Role


@pytest.mark.django_db
class TestClinicSetup:
    """Test roles and owner membership created with a clinic."""

    def test_default_roles_seeded(self, clinic):
        roles = dict(Role.objects.for_clinic(clinic).values_list('name', 'priority'))

        assert roles == {'ADMIN': 90, 'CLINIC_MANAGER': 50, 'DOCTOR': 30, 'RECEPTIONIST': 20}

    def test_owner_membership_created(self, clinic, owner):
        membership = ClinicMember.objects.get(user=owner, clinic=clinic)

        assert membership.role.name == 'ADMIN'

    def test_owner_default_clinic_set_once(self, clinic, owner):
        Clinic.objects.create(name='Second Clinic', owner=owner)

        owner.refresh_from_db()
        assert owner.default_clinic_id == clinic.id

    def test_setup_is_audited(self, clinic):
        entry = AuditLog.objects.for_clinic(clinic.id).by_action('clinic.roles_seeded').get()

        assert entry.user_id is None
        assert set(entry.metadata['roles_created']) == {'ADMIN', 'CLINIC_MANAGER', 'DOCTOR', 'RECEPTIONIST'}
        assert entry.metadata['owner_membership_created'] is True

    def test_update_does_not_reseed(self, clinic):
        clinic.city = 'Mombasa'
        clinic.save()

        assert AuditLog.objects.by_action('clinic.roles_seeded').filter(clinic=clinic).count() == 1

    def test_clinics_for_user(self, clinic, other_clinic, owner, add_member, make_user):
        doctor = add_member('DOCTOR')

        assert list(Clinic.objects.for_user(owner)) == [clinic]
        assert list(Clinic.objects.for_user(doctor.user)) == [clinic]
        assert list(Clinic.objects.for_user(make_user())) == []


@pytest.mark.django_db
class TestResolveClinicContext:

    def test_anonymous(self):
        assert resolve_clinic_context(AnonymousUser()) == ClinicContext()

    def test_default_clinic(self, clinic, owner):
        owner.refresh_from_db()

        context = resolve_clinic_context(owner)

        assert context.active_clinic_id == clinic.id
        assert context.is_owner is True
        assert context.is_member is True

    def test_header_wins_over_default(self, clinic, add_member, make_user):
        user = make_user()
        member = add_member('DOCTOR', user=user)
        elsewhere = Clinic.objects.create(name='Elsewhere', owner=make_user())
        user.default_clinic = elsewhere
        user.save()

        context = resolve_clinic_context(user, str(clinic.id))

        assert context.active_clinic_id == clinic.id
        assert context.membership == member
        assert context.is_owner is False

    def test_foreign_clinic_is_logged(self, clinic, other_clinic, owner):
        with patch('apps.core.logging.SecurityLogger.log_cross_clinic_access') as log:
            context = resolve_clinic_context(owner, str(other_clinic.id))

        assert context.active_clinic_id == other_clinic.id
        assert context.is_member is False
        log.assert_called_once_with(owner.id, other_clinic.id, path=None)

    def test_malformed_header(self, owner):
        context = resolve_clinic_context(owner, 'not-a-uuid')

        assert context.user_id == owner.id
        assert context.active_clinic_id is None

    def test_user_without_clinic(self, make_user):
        user = make_user()

        assert resolve_clinic_context(user).active_clinic_id is None

    def test_context_for_request_is_resolved_lazily(self, clinic, owner):
        request = SimpleNamespace(user=owner, headers={'X-Clinic-ID': str(clinic.id)}, clinic_context=ClinicContext())

        context = clinic_context_for(request)

        assert context.active_clinic_id == clinic.id
        assert request.clinic_context is context
        assert clinic_context_for(request) is context


@pytest.mark.django_db
class TestClinicContextMiddleware:

    def setup_method(self):
        self.factory = RequestFactory()
        self.middleware = ClinicContextMiddleware(lambda request: None)

    def test_public_path_skips_credentials(self):
        request = self.factory.get('/v1/health', HTTP_AUTHORIZATION='Bearer garbage')

        assert self.middleware.process_request(request) is None
        assert request.clinic_context == ClinicContext()

    def test_no_token_is_anonymous(self):
        request = self.factory.get('/v1/rbac/me/permissions')

        assert self.middleware.process_request(request) is None
        assert request.user.is_authenticated is False

    def test_bad_token(self):
        request = self.factory.get('/v1/rbac/me/permissions', HTTP_AUTHORIZATION='Bearer garbage')

        response = self.middleware.process_request(request)

        assert response.status_code == 401
        assert response['WWW-Authenticate'] == 'Bearer'

    def test_token_for_unknown_user(self, make_token):
        ghost = SimpleNamespace(id=uuid.uuid4(), email='ghost@example.com', email_verified=True)
        request = self.factory.get('/v1/clinics', HTTP_AUTHORIZATION=f'Bearer {make_token(ghost)}')

        assert self.middleware.process_request(request).status_code == 401

    def test_valid_token_sets_user_and_context(self, clinic, owner, make_token):
        request = self.factory.get(
            '/v1/clinics',
            HTTP_AUTHORIZATION=f'Bearer {make_token(owner)}',
            HTTP_X_CLINIC_ID=str(clinic.id),
        )

        assert self.middleware.process_request(request) is None
        assert request.user == owner
        assert request.clinic_context.active_clinic_id == clinic.id
        assert request.clinic_context.is_owner is True

    def test_verified_claim_marks_email_verified(self, make_user, make_token):
        user = make_user('new@example.com', verified=False)
        token = make_token(user, email_verified=True)
        request = self.factory.get('/v1/clinics', HTTP_AUTHORIZATION=f'Bearer {token}')

        self.middleware.process_request(request)

        user.refresh_from_db()
        assert user.email_verified is True


@pytest.mark.django_db
class TestClinicListView:

    def test_lists_my_clinics(self, api_client, clinic, owner, make_token):
        response = api_client.get('/v1/clinics', HTTP_AUTHORIZATION=f'Bearer {make_token(owner)}')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 1
        assert response.data['default_clinic_id'] == str(clinic.id)
        assert response.data['clinics'][0]['name'] == 'Riverside Clinic'
        assert response['X-Request-ID']

    def test_new_membership_shows_up(self, api_client, clinic, other_clinic, owner, make_token):
        token = make_token(owner)
        api_client.get('/v1/clinics', HTTP_AUTHORIZATION=f'Bearer {token}')

        ClinicMember.objects.create(
            user=owner, clinic=other_clinic, role=Role.objects.by_name(other_clinic, 'DOCTOR')
        )
        response = api_client.get('/v1/clinics', HTTP_AUTHORIZATION=f'Bearer {token}')

        assert response.data['count'] == 2

    def test_requires_authentication(self, api_client):
        response = api_client.get('/v1/clinics')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
