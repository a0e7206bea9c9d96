"""
Role preconditions and reviewer scoping.

Identity is verified upstream; these helpers only check that the caller
handed to the core has the role an operation needs.  Category scoping
for reviewers is carried in an explicit :class:`ReviewContext` instead of
being read from ambient per-request state.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List

from django.contrib.auth import get_user_model
from django.db.models import Q

from cardflow.models import Application, Role
from .errors import AuthorizationError

User = get_user_model()

REVIEWER_ROLES = frozenset({Role.ADMIN, Role.SUPER})
ORIENTATION_STAFF_ROLES = frozenset({Role.INSPECTOR, Role.ADMIN, Role.SUPER})
OVERRIDE_ROLES = frozenset({Role.SUPER, Role.ADMIN})


def has_role(user, roles: Iterable[str]) -> bool:
    return bool(user is not None and getattr(user, 'role', None) in roles)


def require_role(user, roles: Iterable[str], operation: str) -> None:
    if not has_role(user, roles):
        raise AuthorizationError(f'{operation} requires one of: {", ".join(sorted(roles))}')


def require_owner(user, application: Application) -> None:
    if user is None or application.applicant_id != user.pk:
        raise AuthorizationError('only the applicant may act on this application')


@dataclass(frozen=True)
class ReviewContext:
    """Who is reviewing and which job categories they may touch.

    An empty ``managed_category_ids`` means the reviewer is not narrowed to
    any category.
    """
    reviewer: User
    managed_category_ids: FrozenSet[int] = frozenset()

    @classmethod
    def for_user(cls, user) -> 'ReviewContext':
        if user is None or not getattr(user, 'pk', None):
            return cls(reviewer=user)
        ids = frozenset(user.managed_categories.values_list('id', flat=True))
        return cls(reviewer=user, managed_category_ids=ids)

    def covers(self, job_category_id: int) -> bool:
        if getattr(self.reviewer, 'role', None) == Role.SUPER:
            return True
        return not self.managed_category_ids or job_category_id in self.managed_category_ids

    def require_reviewer(self, application: Application) -> None:
        require_role(self.reviewer, REVIEWER_ROLES, 'review')
        if not self.covers(application.job_category_id):
            raise AuthorizationError('application is outside your managed categories')


def reviewers_for(job_category_id: int) -> List[int]:
    """Ids of reviewers whose scope includes ``job_category_id``."""
    qs = User.objects.filter(role__in=REVIEWER_ROLES, is_active=True).filter(
        Q(managed_categories__isnull=True) | Q(managed_categories__id=job_category_id)
    )
    return sorted(set(qs.values_list('id', flat=True)))
