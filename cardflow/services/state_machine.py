"""
Application lifecycle.

The transition table below is the only place that knows which status
follows which.  Optional stages (payment validation, orientation) are
resolved by routing functions at fire time, so turning a stage off is a
configuration change rather than a code change.

``fire`` drives the automated machine; ``override`` is reserved for
administrative actions (resolving an escalation, re-opening a rejected
application) and only accepts the edges listed in ``ADMIN_EDGES``.
Both expect the caller to hold the application's row lock.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Union

from django.db import models
from django.utils import timezone

from cardflow import conf
from cardflow.models import Application, ApplicationStatus as S, ApplicationTransition, TERMINAL_STATUSES
from .errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)


class ApplicationEvent(models.TextChoices):
    SUBMIT = 'submit', 'Submit'
    START_DOCUMENT_REVIEW = 'start_document_review', 'Start document review'
    DOCUMENT_REJECTED = 'document_rejected', 'Document rejected'
    DOCUMENTS_RESUBMITTED = 'documents_resubmitted', 'Documents resubmitted'
    DOCUMENTS_VERIFIED = 'documents_verified', 'Documents verified'
    PAYMENT_REJECTED = 'payment_rejected', 'Payment rejected'
    PAYMENT_RESUBMITTED = 'payment_resubmitted', 'Payment resubmitted'
    PAYMENT_VERIFIED = 'payment_verified', 'Payment verified'
    ESCALATE = 'escalate', 'Escalate'
    ORIENTATION_BOOKED = 'orientation_booked', 'Orientation booked'
    ORIENTATION_CHECKED_IN = 'orientation_checked_in', 'Orientation checked in'
    ORIENTATION_RELEASED = 'orientation_released', 'Orientation released'
    ORIENTATION_COMPLETED = 'orientation_completed', 'Orientation completed'
    APPROVE = 'approve', 'Approve'
    REJECT = 'reject', 'Reject'
    EXPIRE = 'expire', 'Expire'


E = ApplicationEvent

# Events a caller may request through ``advance``; the rest are raised by
# the review protocol and the scheduler.
EXTERNAL_EVENTS = frozenset({E.START_DOCUMENT_REVIEW, E.APPROVE, E.REJECT, E.EXPIRE})


def after_orientation_gate(application: Application) -> str:
    # attendance carries over when a rejected application is re-opened
    if application.orientation_required and not application.orientation_completed:
        return S.ORIENTATION_PENDING
    return S.UNDER_REVIEW


def after_documents(application: Application) -> str:
    if conf.get('PAYMENT_VALIDATION_ENABLED'):
        return S.PAYMENT_VALIDATION
    return after_orientation_gate(application)


Target = Union[str, Callable[[Application], str]]

TRANSITIONS: Dict[str, Dict[str, Target]] = {
    E.SUBMIT: {S.DRAFT: S.SUBMITTED},
    E.START_DOCUMENT_REVIEW: {S.SUBMITTED: S.DOCUMENT_VERIFICATION},
    E.DOCUMENT_REJECTED: {S.DOCUMENT_VERIFICATION: S.DOCUMENTS_NEED_REVISION},
    E.DOCUMENTS_RESUBMITTED: {S.DOCUMENTS_NEED_REVISION: S.DOCUMENT_VERIFICATION},
    E.DOCUMENTS_VERIFIED: {S.DOCUMENT_VERIFICATION: after_documents},
    E.PAYMENT_REJECTED: {S.PAYMENT_VALIDATION: S.PAYMENT_NEEDS_REVISION},
    E.PAYMENT_RESUBMITTED: {S.PAYMENT_NEEDS_REVISION: S.PAYMENT_VALIDATION},
    E.PAYMENT_VERIFIED: {S.PAYMENT_VALIDATION: after_orientation_gate},
    E.ESCALATE: {
        S.DOCUMENT_VERIFICATION: S.ADMINISTRATIVE_REVIEW,
        S.DOCUMENTS_NEED_REVISION: S.ADMINISTRATIVE_REVIEW,
        S.PAYMENT_VALIDATION: S.ADMINISTRATIVE_REVIEW,
    },
    E.ORIENTATION_BOOKED: {S.ORIENTATION_PENDING: S.ORIENTATION_SCHEDULED},
    E.ORIENTATION_CHECKED_IN: {S.ORIENTATION_SCHEDULED: S.ATTENDANCE_VALIDATION},
    E.ORIENTATION_RELEASED: {
        S.ORIENTATION_SCHEDULED: S.ORIENTATION_PENDING,
        S.ATTENDANCE_VALIDATION: S.ORIENTATION_PENDING,
    },
    E.ORIENTATION_COMPLETED: {S.ATTENDANCE_VALIDATION: S.UNDER_REVIEW},
    E.APPROVE: {S.UNDER_REVIEW: S.APPROVED},
    E.REJECT: {S.UNDER_REVIEW: S.REJECTED},
    # timeout; an escalated application waits for a human instead
    E.EXPIRE: {
        status: S.EXPIRED
        for status in S.values
        if status not in TERMINAL_STATUSES and status != S.ADMINISTRATIVE_REVIEW
    },
}

ADMIN_EDGES = {
    S.ADMINISTRATIVE_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.DOCUMENT_VERIFICATION, S.PAYMENT_VALIDATION}),
    S.REJECTED: frozenset({S.DRAFT}),
}


def lock_application(application_id: int) -> Application:
    application = Application.objects.select_for_update().filter(pk=application_id).first()
    if application is None:
        raise NotFoundError.of('Application', application_id)
    return application


def _nominal_target(event: str) -> str:
    static = {t for t in TRANSITIONS.get(event, {}).values() if isinstance(t, str)}
    if len(static) == 1:
        return static.pop()
    return str(event)


def target_for(application: Application, event: str) -> Optional[str]:
    target = TRANSITIONS.get(event, {}).get(application.status)
    if callable(target):
        target = target(application)
    return target


def can_fire(application: Application, event: str) -> bool:
    return target_for(application, event) is not None


def _record(application: Application, to_status: str, actor, reason: str,
            extra_fields=()) -> ApplicationTransition:
    from_status = application.status
    application.status = to_status
    application.save(update_fields=['status', 'updated_at', *extra_fields])
    transition = ApplicationTransition.objects.create(
        application=application,
        from_status=from_status,
        to_status=to_status,
        actor=actor if getattr(actor, 'pk', None) else None,
        timestamp=timezone.now(),
        reason=(reason or '')[:255],
    )
    logger.info('application %s: %s -> %s (actor=%s, reason=%s)',
                application.pk, from_status, to_status, getattr(actor, 'pk', None), reason or '-')
    return transition


def fire(application: Application, event: str, *, actor=None, reason: str = '',
         extra_fields=()) -> ApplicationTransition:
    """Apply ``event`` to ``application`` or raise ``InvalidTransitionError``.

    ``extra_fields`` names other model fields changed by the caller that
    must be saved together with the status.
    """
    target = target_for(application, event)
    if target is None:
        raise InvalidTransitionError(application.status, _nominal_target(event), f'{event} is not allowed here')
    return _record(application, target, actor, reason or str(event), extra_fields)


def override(application: Application, to_status: str, *, actor, reason: str = '',
             extra_fields=()) -> ApplicationTransition:
    if to_status not in ADMIN_EDGES.get(application.status, ()):
        raise InvalidTransitionError(application.status, to_status, 'not an administrative edge')
    return _record(application, to_status, actor, reason or 'administrative override', extra_fields)
