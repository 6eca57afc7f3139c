"""
Authz models: auth_user, auth_role, auth_user_role

Users are referenced by integer id from mobile-authored documents, and
by `external_id` (the mobile-side user UUID) or email when the document
carries one of those instead.
"""
import uuid
from django.db import models
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin


# ============================================================================
# User Management
# ============================================================================

class UserManager(BaseUserManager):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom user model for authentication.

    Fields:
    - id: integer PK (the value mobile clients embed in documents)
    - email: unique, login field
    - name: display name
    - external_id: mobile-side user identifier (nullable, unique)
    - is_active, is_staff
    - created_at, updated_at
    """
    email = models.EmailField(unique=True, max_length=255)
    name = models.CharField(max_length=255, blank=True)
    external_id = models.CharField(
        max_length=100,
        unique=True,
        null=True,
        blank=True,
        help_text='Identifier assigned to this user by the mobile application'
    )
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)  # Required for admin access
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        db_table = 'auth_user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        indexes = [
            models.Index(fields=['email'], name='idx_user_email'),
            models.Index(fields=['is_active'], name='idx_user_active'),
        ]

    def __str__(self):
        return self.email

    @property
    def role_names(self):
        return set(self.user_roles.values_list('role__name', flat=True))


class RoleChoices(models.TextChoices):
    """Clinical staff roles."""
    ADMIN = 'admin', 'Admin'
    DOCTOR = 'doctor', 'Doctor'
    NURSE = 'nurse', 'Nurse'
    RADIOLOGIST = 'radiologist', 'Radiologist'
    CHW = 'chw', 'Community Health Worker'


class Role(models.Model):
    """
    System roles.

    - id: UUID PK
    - name: unique (admin|doctor|nurse|radiologist|chw)
    - created_at
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(
        max_length=50,
        unique=True,
        choices=RoleChoices.choices
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'auth_role'
        verbose_name = 'Role'
        verbose_name_plural = 'Roles'

    def __str__(self):
        return self.get_name_display()


class UserRole(models.Model):
    """Many-to-many relationship between users and roles."""
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='user_roles'
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='user_roles'
    )

    class Meta:
        db_table = 'auth_user_role'
        verbose_name = 'User Role'
        verbose_name_plural = 'User Roles'
        unique_together = [('user', 'role')]
        indexes = [
            models.Index(fields=['user'], name='idx_user_role_user'),
            models.Index(fields=['role'], name='idx_user_role_role'),
        ]

    def __str__(self):
        return f"{self.user.email} - {self.role.name}"
