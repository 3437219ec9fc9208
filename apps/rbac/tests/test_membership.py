"""
Tests for MembershipService.

Tests:
- Creating memberships and rejecting duplicates
- Role scoping to the membership's clinic
- Removal rules (owner, self, rank) and leaving a clinic
- Role changes bounded by the actor's own rank
- Default clinic bookkeeping
"""
import uuid

import pytest

from apps.core.exceptions import Conflict, Forbidden, NotFound, ValidationError
from apps.rbac.models import AuditLog, ClinicMember, Role
from apps.rbac.services import MembershipService


@pytest.mark.django_db
class TestCreateMembership:
    """Test MembershipService.create_membership."""

    def test_creates_membership(self, clinic, roles, make_user, owner):
        user = make_user()

        membership = MembershipService.create_membership(
            user.id, clinic.id, roles['DOCTOR'].id, invited_by_id=owner.id
        )

        assert membership.role == roles['DOCTOR']
        assert membership.invited_by_id == owner.id
        assert MembershipService.get_membership(user.id, clinic.id) == membership
        assert AuditLog.objects.by_action('member.added').filter(target_id=membership.id).exists()

    def test_duplicate_membership_conflicts(self, clinic, roles, add_member):
        doctor = add_member('DOCTOR')

        with pytest.raises(Conflict):
            MembershipService.create_membership(doctor.user_id, clinic.id, roles['RECEPTIONIST'].id)

        assert ClinicMember.objects.filter(user_id=doctor.user_id, clinic=clinic).count() == 1

    def test_role_from_other_clinic_is_rejected(self, clinic, other_clinic, make_user):
        foreign_role = Role.objects.by_name(other_clinic, 'DOCTOR')

        with pytest.raises(ValidationError):
            MembershipService.create_membership(make_user().id, clinic.id, foreign_role.id)

    def test_global_role_is_allowed(self, clinic, make_user):
        platform_role = Role.objects.create(clinic=None, name='AUDITOR', priority=5)

        membership = MembershipService.create_membership(make_user().id, clinic.id, platform_role.id)

        assert membership.role.is_global

    def test_missing_references(self, clinic, roles, make_user):
        user = make_user()

        with pytest.raises(NotFound):
            MembershipService.create_membership(uuid.uuid4(), clinic.id, roles['DOCTOR'].id)
        with pytest.raises(NotFound):
            MembershipService.create_membership(user.id, uuid.uuid4(), roles['DOCTOR'].id)
        with pytest.raises(NotFound):
            MembershipService.create_membership(user.id, clinic.id, uuid.uuid4())
        with pytest.raises(ValidationError):
            MembershipService.create_membership(user.id, 'nope', roles['DOCTOR'].id)

    def test_user_can_join_several_clinics(self, clinic, other_clinic, roles, make_user):
        user = make_user()
        MembershipService.create_membership(user.id, clinic.id, roles['DOCTOR'].id)
        MembershipService.create_membership(
            user.id, other_clinic.id, Role.objects.by_name(other_clinic, 'RECEPTIONIST').id
        )

        assert ClinicMember.objects.for_user(user.id).count() == 2


@pytest.mark.django_db
class TestListMembers:

    def test_ordered_by_role_priority(self, clinic, owner_membership, add_member):
        add_member('RECEPTIONIST')
        add_member('CLINIC_MANAGER')
        add_member('DOCTOR')

        names = [m.role.name for m in MembershipService.list_members(clinic.id)]

        assert names == ['ADMIN', 'CLINIC_MANAGER', 'DOCTOR', 'RECEPTIONIST']

    def test_scoped_to_clinic(self, clinic, other_clinic, add_member):
        add_member('DOCTOR')

        assert all(m.clinic_id == other_clinic.id for m in MembershipService.list_members(other_clinic.id))


@pytest.mark.django_db
class TestRemoveMembership:
    """Test admin-initiated removal."""

    def test_manager_removes_staff(self, clinic, add_member):
        manager = add_member('CLINIC_MANAGER')
        receptionist = add_member('RECEPTIONIST')

        MembershipService.remove_membership(manager.user_id, receptionist.user_id, clinic.id, request_id='r1')

        assert MembershipService.get_membership(receptionist.user_id, clinic.id) is None
        entry = AuditLog.objects.by_action('member.removed').get()
        assert entry.user_id == manager.user_id
        assert entry.diff['user_id'] == str(receptionist.user_id)

    def test_owner_removes_admin(self, clinic, owner, add_member):
        admin = add_member('ADMIN')

        MembershipService.remove_membership(owner.id, admin.user_id, clinic.id)

        assert MembershipService.get_membership(admin.user_id, clinic.id) is None

    def test_owner_cannot_be_removed(self, clinic, owner, owner_membership, add_member):
        admin = add_member('ADMIN')

        with pytest.raises(Forbidden):
            MembershipService.remove_membership(admin.user_id, owner.id, clinic.id)

        assert MembershipService.get_membership(owner.id, clinic.id) is not None

    def test_self_removal_is_refused(self, clinic, add_member):
        manager = add_member('CLINIC_MANAGER')

        with pytest.raises(Forbidden):
            MembershipService.remove_membership(manager.user_id, manager.user_id, clinic.id)

    def test_cannot_remove_equal_or_higher_rank(self, clinic, add_member):
        manager = add_member('CLINIC_MANAGER')
        other_manager = add_member('CLINIC_MANAGER')
        admin = add_member('ADMIN')

        with pytest.raises(Forbidden):
            MembershipService.remove_membership(manager.user_id, other_manager.user_id, clinic.id)
        with pytest.raises(Forbidden):
            MembershipService.remove_membership(manager.user_id, admin.user_id, clinic.id)

    def test_without_management_permission(self, clinic, add_member):
        doctor = add_member('DOCTOR')
        receptionist = add_member('RECEPTIONIST')

        with pytest.raises(Forbidden):
            MembershipService.remove_membership(doctor.user_id, receptionist.user_id, clinic.id)

    def test_missing_target(self, clinic, owner, make_user):
        with pytest.raises(NotFound):
            MembershipService.remove_membership(owner.id, make_user().id, clinic.id)

    def test_removed_default_clinic_falls_back(self, clinic, other_clinic, owner, make_user):
        user = make_user()
        MembershipService.create_membership(
            user.id, other_clinic.id, Role.objects.by_name(other_clinic, 'DOCTOR').id
        )
        MembershipService.create_membership(user.id, clinic.id, Role.objects.by_name(clinic, 'DOCTOR').id)
        user.default_clinic = clinic
        user.save()

        MembershipService.remove_membership(owner.id, user.id, clinic.id)

        user.refresh_from_db()
        assert user.default_clinic_id == other_clinic.id


@pytest.mark.django_db
class TestLeaveClinic:
    """Test self-service leaving."""

    def test_member_leaves(self, clinic, add_member):
        doctor = add_member('DOCTOR')
        doctor.user.default_clinic = clinic
        doctor.user.save()

        MembershipService.leave_clinic(doctor.user_id, clinic.id)

        assert MembershipService.get_membership(doctor.user_id, clinic.id) is None
        doctor.user.refresh_from_db()
        assert doctor.user.default_clinic_id is None
        assert AuditLog.objects.by_action('member.left').filter(user_id=doctor.user_id).exists()

    def test_owner_cannot_leave(self, clinic, owner, owner_membership):
        with pytest.raises(Forbidden):
            MembershipService.leave_clinic(owner.id, clinic.id)

    def test_non_member(self, clinic, make_user):
        with pytest.raises(NotFound):
            MembershipService.leave_clinic(make_user().id, clinic.id)


@pytest.mark.django_db
class TestChangeRole:
    """Test role changes."""

    def test_manager_promotes_receptionist_to_doctor(self, clinic, roles, add_member):
        manager = add_member('CLINIC_MANAGER')
        receptionist = add_member('RECEPTIONIST')

        updated = MembershipService.change_role(
            manager.user_id, receptionist.user_id, clinic.id, roles['DOCTOR'].id
        )

        assert updated.role == roles['DOCTOR']
        entry = AuditLog.objects.by_action('member.role_changed').get()
        assert entry.diff['role_id'] == {'before': str(roles['RECEPTIONIST'].id), 'after': str(roles['DOCTOR'].id)}

    def test_manager_cannot_grant_own_rank(self, clinic, roles, add_member):
        manager = add_member('CLINIC_MANAGER')
        doctor = add_member('DOCTOR')

        with pytest.raises(Forbidden):
            MembershipService.change_role(manager.user_id, doctor.user_id, clinic.id, roles['CLINIC_MANAGER'].id)
        with pytest.raises(Forbidden):
            MembershipService.change_role(manager.user_id, doctor.user_id, clinic.id, roles['ADMIN'].id)

    def test_owner_grants_any_role(self, clinic, owner, roles, add_member):
        doctor = add_member('DOCTOR')

        updated = MembershipService.change_role(owner.id, doctor.user_id, clinic.id, roles['ADMIN'].id)

        assert updated.role == roles['ADMIN']

    def test_cannot_change_higher_rank(self, clinic, roles, add_member):
        manager = add_member('CLINIC_MANAGER')
        admin = add_member('ADMIN')

        with pytest.raises(Forbidden):
            MembershipService.change_role(manager.user_id, admin.user_id, clinic.id, roles['DOCTOR'].id)

    def test_role_from_other_clinic(self, clinic, other_clinic, owner, add_member):
        doctor = add_member('DOCTOR')

        with pytest.raises(ValidationError):
            MembershipService.change_role(
                owner.id, doctor.user_id, clinic.id, Role.objects.by_name(other_clinic, 'RECEPTIONIST').id
            )
