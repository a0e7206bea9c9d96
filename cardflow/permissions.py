"""
Role based permission classes for the request layer.

These only gate whole endpoints; the services repeat the role checks
(and add ownership and category scoping) so they hold for any caller.
"""
from rest_framework.permissions import BasePermission

from cardflow.models import Role

REVIEWER_ROLES = {Role.ADMIN, Role.SUPER}
STAFF_ROLES = {Role.INSPECTOR, Role.ADMIN, Role.SUPER}


class IsApplicantRole(BasePermission):
    """Allow access only to users with the applicant role."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == Role.APPLICANT)


class IsReviewerRole(BasePermission):
    """Allow access only to administrators and super administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in REVIEWER_ROLES)


class IsStaffRole(BasePermission):
    """Inspectors, administrators and super administrators."""
    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in STAFF_ROLES)
