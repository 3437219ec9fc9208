"""
RBAC models for multi-clinic access control.

Implements:
- Global User identity (can work across multiple clinics)
- Permission (fixed catalog of capability codes)
- Role (global system roles or per-clinic custom roles, ordered by priority)
- RolePermission (maps permissions to roles)
- ClinicMember (one user, one clinic, one role)
- Invitation (PENDING -> ACCEPTED | REJECTED offer of membership)
- AuditLog (audit trail of membership and role changes)
"""
import logging
from django.contrib.auth.hashers import make_password, check_password
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email (case-insensitive)."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            # Credentials live with the identity provider
            user.password_hash = make_password(None)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Create a platform administrator (createsuperuser support)."""
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('email_verified', True)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """
        Normalize the whole address to lower case.

        Invitations are matched on email, so the comparison must not depend
        on how the inviter typed the address.
        """
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: self.normalize_email(email)})


class User(BaseModel):
    """
    Global user identity - can belong to multiple clinics.

    Authentication happens at the identity provider, authorization at the
    ClinicMember level. default_clinic is the user's stored active clinic
    used when a request does not name one.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password (unused when the identity provider authenticates)",
        db_column='password_hash'
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform administrator"
    )
    email_verified = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the identity provider verified the email"
    )
    default_clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text="Clinic used as active context when none is requested"
    )
    last_login_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        # Clinic permissions go through PermissionResolver, never Django perms
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class PermissionCode(models.TextChoices):
    """The fixed permission catalog."""

    PATIENT_READ = 'PATIENT_READ', 'Read patients'
    PATIENT_CREATE = 'PATIENT_CREATE', 'Create patients'
    PATIENT_UPDATE = 'PATIENT_UPDATE', 'Update patients'
    PATIENT_DELETE = 'PATIENT_DELETE', 'Delete patients'
    PATIENT_VIEW_ALL = 'PATIENT_VIEW_ALL', 'View all patients of the clinic'
    APPOINTMENT_READ = 'APPOINTMENT_READ', 'Read appointments'
    APPOINTMENT_CREATE = 'APPOINTMENT_CREATE', 'Create appointments'
    APPOINTMENT_UPDATE = 'APPOINTMENT_UPDATE', 'Update appointments'
    APPOINTMENT_DELETE = 'APPOINTMENT_DELETE', 'Delete appointments'
    USER_READ = 'USER_READ', 'Read users'
    USER_CREATE = 'USER_CREATE', 'Create users'
    USER_UPDATE = 'USER_UPDATE', 'Update users'
    USER_DELETE = 'USER_DELETE', 'Delete users'
    USER_MANAGE = 'USER_MANAGE', 'Invite, remove and re-role team members'
    ROLE_READ = 'ROLE_READ', 'Read roles'
    ROLE_CREATE = 'ROLE_CREATE', 'Create roles'
    ROLE_UPDATE = 'ROLE_UPDATE', 'Update and reorder roles'
    ROLE_DELETE = 'ROLE_DELETE', 'Delete roles'
    DASHBOARD_READ = 'DASHBOARD_READ', 'Read dashboard'
    CLINIC_UPDATE = 'CLINIC_UPDATE', 'Update clinic profile'
    CLINIC_OWNER_MANAGE = 'CLINIC_OWNER_MANAGE', 'Manage clinic ownership'
    SETTINGS_EDIT = 'SETTINGS_EDIT', 'Edit settings'
    SETTINGS_MANAGE = 'SETTINGS_MANAGE', 'Manage settings'
    TEAM_READ = 'TEAM_READ', 'Read team members'
    DOCTOR_RATE_MANAGE = 'DOCTOR_RATE_MANAGE', 'Manage doctor rates'
    VISIT_TYPE_MANAGE = 'VISIT_TYPE_MANAGE', 'Manage visit types'

    @classmethod
    def category_of(cls, code):
        """Category is the catalog prefix, e.g. PATIENT_READ -> patient."""
        return code.split('_', 1)[0].lower()


# Permission required to manage other members of a clinic
MANAGE_PERMISSION = PermissionCode.USER_MANAGE.value


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_code(self, code):
        return self.filter(code=code).first()

    def by_category(self, category):
        return self.filter(category=category)

    def get_or_create_permission(self, code, label, description='', category=''):
        """Get or create permission (idempotent)."""
        return self.get_or_create(
            code=code,
            defaults={
                'label': label,
                'description': description,
                'category': category,
            }
        )


class Permission(BaseModel):
    """
    Global permission definition - shared, immutable reference data.
    """

    code = models.CharField(
        max_length=100,
        unique=True,
        choices=PermissionCode.choices,
        help_text="Unique permission code (e.g., 'PATIENT_CREATE')"
    )
    label = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=50, db_index=True)

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'code']

    def __str__(self):
        return self.code


class RoleQuerySet(models.QuerySet):
    """Chainable Role filters with clinic scoping."""

    def global_roles(self):
        """System roles not bound to any clinic."""
        return self.filter(clinic__isnull=True)

    def for_clinic(self, clinic):
        """Custom roles of one clinic."""
        return self.filter(clinic=clinic)

    def visible_to(self, clinic):
        """Roles a member of the clinic may hold: its own plus global ones."""
        return self.filter(Q(clinic=clinic) | Q(clinic__isnull=True))

    def in_scope_of(self, role):
        """Roles sharing the given role's scope (same clinic, or all global roles)."""
        if role.clinic_id is None:
            return self.global_roles()
        return self.filter(clinic_id=role.clinic_id)

    def by_authority(self):
        """Highest authority first."""
        return self.order_by('-priority', 'id')


class RoleManager(models.Manager):
    """Manager for Role lookups."""

    def by_name(self, clinic, name):
        return self.filter(clinic=clinic, name=name).first()


class Role(BaseModel):
    """
    Named bundle of permissions.

    clinic=None marks a global system role (e.g. SUPER_ADMIN). Within one
    scope, priorities are distinct; a higher priority means more authority
    and may manage members whose role priority is strictly lower.
    Priority distinctness is kept by RolePriorityService rather than a
    unique index, because a swap passes through a state where both rows
    briefly hold the same value on databases without deferred constraints.
    """

    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='roles',
        help_text="Owning clinic, or null for a global role"
    )
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    priority = models.IntegerField(
        default=0,
        help_text="Authority rank, higher manages lower"
    )
    is_system = models.BooleanField(default=False, db_index=True)
    permissions = models.ManyToManyField(
        'Permission',
        through='RolePermission',
        related_name='roles',
        blank=True,
    )

    objects = RoleManager.from_queryset(RoleQuerySet)()

    class Meta:
        db_table = 'roles'
        ordering = ['-priority', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'name'],
                name='unique_role_name_per_clinic',
            ),
            models.UniqueConstraint(
                fields=['name'],
                condition=Q(clinic__isnull=True),
                name='unique_global_role_name',
            ),
        ]
        indexes = [
            models.Index(fields=['clinic', 'priority']),
        ]

    def __str__(self):
        return f"{self.name} ({self.priority})"

    @property
    def is_global(self):
        return self.clinic_id is None

    def permission_codes(self):
        """Directly-assigned permission codes."""
        return set(
            RolePermission.objects.filter(role=self).values_list('permission__code', flat=True)
        )


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        return self.get_or_create(role=role, permission=permission)

    def revoke_permission(self, role, permission):
        """Revoke permission from role. Goes through delete() so signals fire."""
        for role_permission in self.filter(role=role, permission=permission):
            role_permission.delete()


class RolePermission(BaseModel):
    """
    Maps permissions to roles.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]

    def __str__(self):
        return f"{self.role.name} -> {self.permission.code}"


class ClinicMemberQuerySet(models.QuerySet):
    """Chainable ClinicMember filters."""

    def for_clinic(self, clinic_id):
        return self.filter(clinic_id=clinic_id)

    def for_user(self, user_id):
        return self.filter(user_id=user_id)


class ClinicMemberManager(models.Manager):
    """Manager for ClinicMember queries."""

    def get_membership(self, user_id, clinic_id):
        """Return the (user, clinic) membership with its role, or None."""
        return self.select_related('role', 'clinic').filter(
            user_id=user_id, clinic_id=clinic_id
        ).first()


class ClinicMember(BaseModel):
    """
    Binds one User to one Clinic with one Role.

    A user holds at most one role per clinic but may belong to many clinics.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='memberships',
    )
    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.CASCADE,
        related_name='members',
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='members',
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    joined_at = models.DateTimeField(default=timezone.now)

    objects = ClinicMemberManager.from_queryset(ClinicMemberQuerySet)()

    class Meta:
        db_table = 'clinic_members'
        ordering = ['clinic', '-joined_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'clinic'],
                name='unique_clinic_member',
            ),
        ]
        indexes = [
            models.Index(fields=['clinic', 'role']),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.clinic_id} as {self.role_id}"


class InvitationStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    ACCEPTED = 'ACCEPTED', 'Accepted'
    REJECTED = 'REJECTED', 'Rejected'


class InvitationQuerySet(models.QuerySet):
    """Chainable Invitation filters."""

    def pending(self):
        return self.filter(status=InvitationStatus.PENDING)

    def for_email(self, email):
        return self.filter(email=UserManager.normalize_email(email))

    def for_clinic(self, clinic_id):
        return self.filter(clinic_id=clinic_id)


class Invitation(BaseModel):
    """
    Offer for an email address to join a clinic under a role.

    Created PENDING; terminates exactly once as ACCEPTED or REJECTED.
    """

    email = models.EmailField(db_index=True)
    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.CASCADE,
        related_name='invitations',
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='invitations',
    )
    inviter = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sent_invitations',
    )
    status = models.CharField(
        max_length=20,
        choices=InvitationStatus.choices,
        default=InvitationStatus.PENDING,
        db_index=True,
    )
    responded_at = models.DateTimeField(null=True, blank=True)

    objects = InvitationQuerySet.as_manager()

    class Meta:
        db_table = 'invitations'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email', 'status']),
            models.Index(fields=['clinic', 'status']),
        ]

    def __str__(self):
        return f"{self.email} -> {self.clinic_id} ({self.status})"

    @property
    def is_pending(self):
        return self.status == InvitationStatus.PENDING

    def is_addressed_to(self, user) -> bool:
        return UserManager.normalize_email(user.email) == self.email


class AuditLogQuerySet(models.QuerySet):
    """Chainable AuditLog filters with clinic scoping."""

    def for_clinic(self, clinic_id):
        return self.filter(clinic_id=clinic_id)

    def by_action(self, action):
        return self.filter(action=action)


class AuditLog(BaseModel):
    """
    Audit trail for membership, invitation and role ordering changes.
    """

    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'invitation.accepted', 'role.reordered')"
    )
    target_type = models.CharField(max_length=50, db_index=True)
    target_id = models.UUIDField(null=True, blank=True, db_index=True)
    diff = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    request_id = models.CharField(max_length=64, blank=True)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['clinic', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        return f"{self.clinic_id} - {self.user_id or 'System'} - {self.action}"

    @classmethod
    def log_action(cls, action, user_id=None, clinic_id=None, target_type=None,
                   target_id=None, diff=None, metadata=None, request_id=None):
        """
        Create an audit log entry.

        Runs in its own savepoint so that a failing insert never breaks the
        surrounding business transaction. Failures are logged, not raised.
        """
        try:
            with transaction.atomic():
                return cls.objects.create(
                    action=action,
                    user_id=user_id,
                    clinic_id=clinic_id,
                    target_type=target_type or '',
                    target_id=target_id,
                    diff=diff or {},
                    metadata=metadata or {},
                    request_id=request_id or '',
                )
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'clinic_id': str(clinic_id) if clinic_id else None},
                exc_info=True
            )
            return None
