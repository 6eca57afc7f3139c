"""
Authz permissions for clinical workflow and sync operations endpoints.
"""
from rest_framework import permissions
from apps.authz.models import RoleChoices


def get_user_roles(user):
    """Return the set of role names assigned to `user`."""
    if not user or not user.is_authenticated:
        return set()
    return set(user.user_roles.values_list('role__name', flat=True))


class IsAdmin(permissions.BasePermission):
    """
    Permission class that only allows Admin role users (or staff).

    Used for sync operations endpoints.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        if request.user.is_staff:
            return True

        return RoleChoices.ADMIN in get_user_roles(request.user)


class ClinicalWorkflowPermission(permissions.BasePermission):
    """
    Permission for clinical session endpoints based on role.

    - Admin, Doctor, Nurse: read and transition sessions
    - Radiologist, CHW: read-only
    """

    READ_ROLES = {
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
        RoleChoices.RADIOLOGIST,
        RoleChoices.CHW,
    }
    WRITE_ROLES = {
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
    }

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        user_roles = get_user_roles(request.user)

        if request.method in permissions.SAFE_METHODS:
            return bool(user_roles & self.READ_ROLES)

        return bool(user_roles & self.WRITE_ROLES)

    def has_object_permission(self, request, view, obj):
        return self.has_permission(request, view)
