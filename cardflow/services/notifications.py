"""
Notification intents.

The core never delivers anything itself.  It decides *that* someone
should be told and *what* to tell them, records the intent in the
``Notification`` outbox inside the caller's transaction, and hands the
intent to the channel layer once the transaction commits.  Whatever
listens on the per-recipient channel group (websocket consumer, push or
email bridge) is the delivery collaborator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from cardflow.models import Notification

logger = logging.getLogger(__name__)


class NotificationKind:
    APPLICATION_SUBMITTED = 'application_submitted'
    APPLICATION_APPROVED = 'application_approved'
    APPLICATION_REJECTED = 'application_rejected'
    APPLICATION_EXPIRED = 'application_expired'
    APPLICATION_ESCALATED = 'application_escalated'
    APPLICATION_REOPENED = 'application_reopened'
    ESCALATION_RESOLVED = 'escalation_resolved'
    DOCUMENT_APPROVED = 'document_approved'
    DOCUMENT_REJECTED = 'document_rejected'
    DOCUMENT_REFERRED = 'document_referred'
    DOCUMENT_RESUBMITTED = 'document_resubmitted'
    PAYMENT_RECEIVED = 'payment_received'
    PAYMENT_APPROVED = 'payment_approved'
    PAYMENT_REJECTED = 'payment_rejected'
    PAYMENT_RESUBMITTED = 'payment_resubmitted'
    ORIENTATION_REQUIRED = 'orientation_required'
    ORIENTATION_SCHEDULED = 'orientation_scheduled'
    ORIENTATION_CANCELLED = 'orientation_cancelled'
    ORIENTATION_CHECKED_IN = 'orientation_checked_in'
    ORIENTATION_COMPLETED = 'orientation_completed'
    ORIENTATION_MISSED = 'orientation_missed'
    HEALTH_CARD_ISSUED = 'health_card_issued'
    HEALTH_CARD_REVOKED = 'health_card_revoked'
    HEALTH_CARD_EXPIRED = 'health_card_expired'


@dataclass(frozen=True)
class NotificationIntent:
    recipient_id: int
    kind: str
    payload: dict = field(default_factory=dict)
    application_id: Optional[int] = None

    def as_dict(self) -> dict:
        return {'recipientId': self.recipient_id, 'kind': self.kind, 'payload': self.payload}


@dataclass
class Result:
    """Success payload of a core operation plus the intents it emitted."""
    value: Any
    notifications: List[NotificationIntent] = field(default_factory=list)

    def extend(self, intents: Iterable[NotificationIntent]) -> 'Result':
        self.notifications.extend(intents)
        return self


def recipient_group(recipient_id: int) -> str:
    return f'notifications.user.{recipient_id}'


def intent(recipient_id: int, kind: str, *, application_id: Optional[int] = None, **payload) -> NotificationIntent:
    if application_id is not None:
        payload.setdefault('applicationId', application_id)
    return NotificationIntent(recipient_id=recipient_id, kind=kind, payload=payload, application_id=application_id)


def emit(intents: Iterable[NotificationIntent]) -> List[NotificationIntent]:
    """Record ``intents`` in the outbox and broadcast them after commit."""
    intents = list(intents)
    if not intents:
        return intents
    Notification.objects.bulk_create([
        Notification(
            recipient_id=i.recipient_id,
            application_id=i.application_id,
            kind=i.kind,
            payload=i.payload,
        )
        for i in intents
    ])
    transaction.on_commit(lambda: _broadcast(intents))
    return intents


def _broadcast(intents: List[NotificationIntent]) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    for i in intents:
        try:
            async_to_sync(channel_layer.group_send)(
                recipient_group(i.recipient_id),
                {'type': 'notification.intent', **i.as_dict()},
            )
        except Exception:
            # the outbox row is already committed; delivery can be replayed from it
            logger.exception('could not hand %s notification to the channel layer', i.kind)
