"""
Audit trail for actions that are not application status changes.

Status changes already leave an ``ApplicationTransition`` row; reviews,
bookings, card issuance and logins are recorded here.  Events recorded
against an artifact, booking or card carry ``applicationId`` in their
detail so the whole history of an application can be read back.
"""
from typing import Any, Dict, List, Optional

from django.db.models import Q

from cardflow.models import AuditEvent, User


def log_action(*, user: Optional[User], action: str, object_type: Optional[str] = None,
               object_id: Optional[int] = None, detail: Optional[Dict[str, Any]] = None) -> AuditEvent:
    detail = dict(detail or {})
    actor = user if isinstance(user, User) and user.pk else None
    if actor is not None:
        detail.setdefault('role', actor.role)
    return AuditEvent.objects.create(
        user=actor,
        action=action,
        object_type=object_type,
        object_id=object_id,
        detail=detail,
    )


def application_trail(application_id: int, limit: int = 200) -> List[AuditEvent]:
    """Events on the application itself and on everything submitted or booked for it, oldest first."""
    events = AuditEvent.objects.filter(
        Q(object_type='application', object_id=application_id) | Q(detail__applicationId=application_id)
    )
    events = events.select_related('user').order_by('-created_at', '-id')[:limit]
    return list(reversed(events))
