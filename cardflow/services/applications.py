"""
Application operations.

This is the entry point the request layer calls: drafts and submission,
document and payment submission/review (delegating the attempt rules to
the review protocol and reacting to its outcome), externally requested
events, administrative overrides and the inactivity timeout.

Every mutating function runs as one atomic operation and locks the
application row first, then lineages, then artifacts.
"""
from __future__ import annotations

import datetime
import logging
from typing import List, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from cardflow import conf
from cardflow.models import (
    Application, ApplicationStatus as S, ApplicationType, Artifact, ArtifactKind,
    ArtifactLineage, BookingStatus, DocumentType, HealthCard, JobCategory, OrientationBooking, ReviewStatus,
    Role, TERMINAL_STATUSES,
)
from . import health_cards, scheduling, state_machine
from .access import (
    ORIENTATION_STAFF_ROLES, OVERRIDE_ROLES, REVIEWER_ROLES, ReviewContext, has_role, require_owner,
    require_role, reviewers_for,
)
from .audit import log_action
from .errors import AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError, WorkflowError
from .notifications import NotificationKind, Result, emit, intent
from .review_protocol import ArtifactReviewProtocol, ReviewOutcome, documents, payments, rejection_summary
from .state_machine import ApplicationEvent as E, lock_application
from .text import clean_text
from .tx import atomic_operation

logger = logging.getLogger(__name__)

DOCUMENT_SUBMIT_STATUSES = frozenset({
    S.DRAFT, S.SUBMITTED, S.DOCUMENT_VERIFICATION, S.DOCUMENTS_NEED_REVISION,
})
PAYMENT_SUBMIT_STATUSES = DOCUMENT_SUBMIT_STATUSES | {S.PAYMENT_VALIDATION, S.PAYMENT_NEEDS_REVISION}
DOCUMENT_REVIEW_STATUSES = frozenset({S.DOCUMENT_VERIFICATION, S.DOCUMENTS_NEED_REVISION})


def _notify_reviewers(application: Application, kind: str, **payload):
    return [intent(rid, kind, application_id=application.pk, **payload)
            for rid in reviewers_for(application.job_category_id)]


def _can_view(user, application: Application) -> bool:
    if user is None:
        return False
    if application.applicant_id == user.pk:
        return True
    if has_role(user, REVIEWER_ROLES):
        return ReviewContext.for_user(user).covers(application.job_category_id)
    return has_role(user, ORIENTATION_STAFF_ROLES)


# ---------------------------------------------------------------------------
# Drafts and submission
# ---------------------------------------------------------------------------

@atomic_operation
def create_draft(applicant, job_category_id: int, application_type: str = ApplicationType.NEW,
                 previous_card_id: Optional[int] = None) -> Result:
    require_role(applicant, {Role.APPLICANT}, 'create application')
    category = JobCategory.objects.filter(pk=job_category_id).first()
    if category is None:
        raise NotFoundError.of('JobCategory', job_category_id)
    if application_type not in ApplicationType.values:
        raise ValidationError({'applicationType': f'Must be one of: {", ".join(ApplicationType.values)}.'})

    previous_card = None
    if previous_card_id is not None:
        previous_card = HealthCard.objects.filter(pk=previous_card_id, application__applicant=applicant).first()
        if previous_card is None:
            raise NotFoundError.of('HealthCard', previous_card_id)
    if application_type == ApplicationType.NEW:
        previous_card = None

    open_qs = Application.objects.select_for_update().filter(applicant=applicant).exclude(status__in=TERMINAL_STATUSES)
    if open_qs.exists():
        raise ConflictError('An open application already exists for this applicant.')
    try:
        with transaction.atomic():
            application = Application.objects.create(
                applicant=applicant,
                job_category=category,
                application_type=application_type,
                previous_card=previous_card,
                orientation_required=category.requires_orientation,
            )
    except IntegrityError as exc:
        raise ConflictError('An open application already exists for this applicant.') from exc

    log_action(user=applicant, action='application_create', object_type='application', object_id=application.pk,
               detail={'jobCategoryId': category.pk, 'type': application_type})
    logger.info('draft application %s created for user %s', application.pk, applicant.pk)
    return Result(application)


def missing_documents(application: Application) -> List[DocumentType]:
    """Required document types without a pending or approved submission this round."""
    covered = set(
        Artifact.objects.filter(
            application=application,
            kind=ArtifactKind.DOCUMENT,
            lineage__round=application.review_round,
            review_status__in=[ReviewStatus.PENDING, ReviewStatus.APPROVED],
        ).values_list('lineage__document_type_id', flat=True)
    )
    return [d for d in application.job_category.required_documents.order_by('code') if d.pk not in covered]


@atomic_operation
def submit(application_id: int, actor) -> Result:
    application = lock_application(application_id)
    require_owner(actor, application)
    if not state_machine.can_fire(application, E.SUBMIT):
        raise InvalidTransitionError(application.status, S.SUBMITTED)
    missing = missing_documents(application)
    if missing:
        raise InvalidTransitionError(application.status, S.SUBMITTED,
                                     'missing documents: ' + ', '.join(d.code for d in missing))

    application.submitted_at = timezone.now()
    state_machine.fire(application, E.SUBMIT, actor=actor, extra_fields=('submitted_at',))
    notices = emit([
        intent(application.applicant_id, NotificationKind.APPLICATION_SUBMITTED, application_id=application.pk),
        *_notify_reviewers(application, NotificationKind.APPLICATION_SUBMITTED),
    ])
    return Result(application, notices)


def get_status(application_id: int, user) -> Application:
    application = (Application.objects.select_related('job_category', 'applicant')
                   .prefetch_related('transitions').filter(pk=application_id).first())
    if application is None:
        raise NotFoundError.of('Application', application_id)
    if not _can_view(user, application):
        raise AuthorizationError('you may not view this application')
    return application


# ---------------------------------------------------------------------------
# Externally requested events
# ---------------------------------------------------------------------------

def _cancel_active_bookings(application: Application, now: datetime.datetime) -> None:
    for booking in OrientationBooking.objects.select_for_update().filter(
        application=application, status__in=scheduling.RELEASABLE_STATUSES
    ):
        scheduling.release(booking, BookingStatus.CANCELLED, now)


@atomic_operation
def advance(application_id: int, event: str, actor, reason: str = '') -> Result:
    """Apply an externally requested event (review start, decision, expiry)."""
    application = lock_application(application_id)
    if event not in state_machine.EXTERNAL_EVENTS:
        raise InvalidTransitionError(application.status, str(event), 'this event is driven by the workflow itself')
    reason = clean_text(reason, 255)

    if event == E.EXPIRE:
        require_role(actor, OVERRIDE_ROLES, 'expire application')
    else:
        ReviewContext.for_user(actor).require_reviewer(application)

    if event == E.EXPIRE and state_machine.can_fire(application, E.EXPIRE):
        _cancel_active_bookings(application, timezone.now())
    if event == E.REJECT:
        application.admin_remarks = reason
        state_machine.fire(application, event, actor=actor, reason=reason, extra_fields=('admin_remarks',))
    else:
        state_machine.fire(application, event, actor=actor, reason=reason)

    result = Result(application)
    if event == E.APPROVE:
        result.extend(emit([intent(application.applicant_id, NotificationKind.APPLICATION_APPROVED,
                                   application_id=application.pk)]))
        result.extend(health_cards.issue_for(application, actor).notifications)
    elif event == E.REJECT:
        result.extend(emit([intent(application.applicant_id, NotificationKind.APPLICATION_REJECTED,
                                   application_id=application.pk, reason=reason)]))
    elif event == E.EXPIRE:
        result.extend(emit([intent(application.applicant_id, NotificationKind.APPLICATION_EXPIRED,
                                   application_id=application.pk)]))
    log_action(user=actor, action=f'application_{event}', object_type='application', object_id=application.pk,
               detail={'status': application.status})
    return result


# ---------------------------------------------------------------------------
# Documents and payments
# ---------------------------------------------------------------------------

def _after_resubmission(application: Application, protocol: ArtifactReviewProtocol, event: str, actor) -> None:
    if state_machine.can_fire(application, event) and not protocol.outstanding_rejections(application):
        state_machine.fire(application, event, actor=actor, reason='all rejected items resubmitted')


@atomic_operation
def submit_document(application_id: int, document_type_code: str, payload_ref: str, actor,
                    payload: Optional[dict] = None) -> Result:
    application = lock_application(application_id)
    require_owner(actor, application)
    document_type = DocumentType.objects.filter(code=document_type_code).first()
    if document_type is None:
        raise NotFoundError.of('DocumentType', document_type_code)

    lineage = documents.open_lineage(application, document_type)
    # a frozen lineage reports LockedError whatever the application status
    if application.status not in DOCUMENT_SUBMIT_STATUSES and not lineage.is_locked:
        raise InvalidTransitionError(application.status, S.DOCUMENT_VERIFICATION,
                                     'documents cannot be submitted in this status')
    outcome = documents.submit(lineage.pk, payload_ref, payload, submitted_by=actor)
    notices = []
    if outcome.resubmission:
        _after_resubmission(application, documents, E.DOCUMENTS_RESUBMITTED, actor)
        notices = emit(_notify_reviewers(application, NotificationKind.DOCUMENT_RESUBMITTED,
                                         artifactId=outcome.artifact.pk, documentType=document_type.code,
                                         attemptNumber=outcome.attempt_number))
    log_action(user=actor, action='document_submit', object_type='artifact', object_id=outcome.artifact.pk,
               detail={'applicationId': application.pk, 'attempt': outcome.attempt_number})
    return Result(outcome.artifact, notices)


@atomic_operation
def submit_payment(application_id: int, payload_ref: str, payload: dict, actor) -> Result:
    application = lock_application(application_id)
    require_owner(actor, application)
    if not conf.get('PAYMENT_VALIDATION_ENABLED'):
        raise InvalidTransitionError(application.status, S.PAYMENT_VALIDATION, 'payment validation is disabled')
    lineage = payments.open_lineage(application)
    if application.status not in PAYMENT_SUBMIT_STATUSES and not lineage.is_locked:
        raise InvalidTransitionError(application.status, S.PAYMENT_VALIDATION,
                                     'payments cannot be submitted in this status')
    outcome = payments.submit(lineage.pk, payload_ref, payload, submitted_by=actor)
    if outcome.resubmission:
        _after_resubmission(application, payments, E.PAYMENT_RESUBMITTED, actor)
        kind = NotificationKind.PAYMENT_RESUBMITTED
    else:
        kind = NotificationKind.PAYMENT_RECEIVED
    notices = emit(_notify_reviewers(application, kind, artifactId=outcome.artifact.pk,
                                     attemptNumber=outcome.attempt_number,
                                     netAmount=outcome.artifact.payload.get('netAmount')))
    log_action(user=actor, action='payment_submit', object_type='artifact', object_id=outcome.artifact.pk,
               detail={'applicationId': application.pk, 'attempt': outcome.attempt_number})
    return Result(outcome.artifact, notices)


def _lock_for_artifact(artifact_id: int, kind: str) -> Application:
    application_id = (Artifact.objects.filter(pk=artifact_id, kind=kind)
                      .values_list('application_id', flat=True).first())
    if application_id is None:
        raise NotFoundError.of('Artifact', artifact_id)
    return lock_application(application_id)


def documents_verified(application: Application) -> bool:
    if missing_documents(application):
        return False
    for lineage in documents.lineages(application):
        latest = documents.latest(lineage)
        if latest is not None and latest.review_status != ReviewStatus.APPROVED:
            return False
    return True


def _escalate(application: Application, outcome: ReviewOutcome, actor) -> list:
    state_machine.fire(application, E.ESCALATE, actor=actor,
                       reason=f'{outcome.artifact.lineage.key} reached the attempt limit')
    return emit(_notify_reviewers(application, NotificationKind.APPLICATION_ESCALATED,
                                  lineage=outcome.artifact.lineage.key))


def _orientation_notice(application: Application) -> list:
    if application.status != S.ORIENTATION_PENDING:
        return []
    return emit([intent(application.applicant_id, NotificationKind.ORIENTATION_REQUIRED,
                        application_id=application.pk)])


@atomic_operation
def review_document(artifact_id: int, decision: str, context: ReviewContext, *, remarks: str = '',
                    category: Optional[str] = None, reason: Optional[str] = None,
                    specific_issues: Optional[List[str]] = None, **findings) -> Result:
    """Review one document; ``findings`` carries the medical referral details of a rejection."""
    application = _lock_for_artifact(artifact_id, ArtifactKind.DOCUMENT)
    context.require_reviewer(application)
    actor = context.reviewer
    if application.status == S.SUBMITTED:
        state_machine.fire(application, E.START_DOCUMENT_REVIEW, actor=actor)
    if application.status not in DOCUMENT_REVIEW_STATUSES:
        raise InvalidTransitionError(application.status, S.DOCUMENT_VERIFICATION,
                                     'documents are not under verification')

    outcome = documents.review(artifact_id, decision, context,
                               remarks=remarks, category=category, reason=reason,
                               specific_issues=specific_issues, **findings)
    result = Result(outcome, list(outcome.notifications))
    if outcome.approved:
        if application.status == S.DOCUMENT_VERIFICATION and documents_verified(application):
            state_machine.fire(application, E.DOCUMENTS_VERIFIED, actor=actor)
            result.extend(_orientation_notice(application))
    elif outcome.locked:
        result.extend(_escalate(application, outcome, actor))
    elif application.status == S.DOCUMENT_VERIFICATION:
        state_machine.fire(application, E.DOCUMENT_REJECTED, actor=actor, reason=outcome.rejection.reason)
    return result


@atomic_operation
def review_payment(artifact_id: int, decision: str, context: ReviewContext, *, remarks: str = '',
                   category: Optional[str] = None, reason: Optional[str] = None,
                   specific_issues: Optional[List[str]] = None, **findings) -> Result:
    application = _lock_for_artifact(artifact_id, ArtifactKind.PAYMENT)
    context.require_reviewer(application)
    actor = context.reviewer
    if application.status != S.PAYMENT_VALIDATION:
        raise InvalidTransitionError(application.status, S.PAYMENT_VALIDATION, 'payment is not under validation')

    outcome = payments.review(artifact_id, decision, context,
                              remarks=remarks, category=category, reason=reason,
                              specific_issues=specific_issues, **findings)
    result = Result(outcome, list(outcome.notifications))
    if outcome.approved:
        state_machine.fire(application, E.PAYMENT_VERIFIED, actor=actor)
        result.extend(_orientation_notice(application))
    elif outcome.locked:
        result.extend(_escalate(application, outcome, actor))
    else:
        state_machine.fire(application, E.PAYMENT_REJECTED, actor=actor, reason=outcome.rejection.reason)
    return result


def _lineage_for_viewer(lineage_id: int, user) -> ArtifactLineage:
    lineage = ArtifactLineage.objects.select_related('application').filter(pk=lineage_id).first()
    if lineage is None:
        raise NotFoundError.of('Lineage', lineage_id)
    if not _can_view(user, lineage.application):
        raise AuthorizationError('you may not view this application')
    return lineage


def get_rejection_history(lineage_id: int, user):
    lineage = _lineage_for_viewer(lineage_id, user)
    protocol = documents if lineage.kind == ArtifactKind.DOCUMENT else payments
    return protocol.history(lineage.pk)


def get_rejection_summary(application_id: int, user) -> dict:
    return rejection_summary(get_status(application_id, user))


# ---------------------------------------------------------------------------
# Administrative actions
# ---------------------------------------------------------------------------

@atomic_operation
def resolve_escalation(application_id: int, to_status: str, actor, remarks: str = '') -> Result:
    require_role(actor, OVERRIDE_ROLES, 'resolve escalation')
    application = lock_application(application_id)
    ReviewContext.for_user(actor).require_reviewer(application)
    remarks = clean_text(remarks, 2000)
    if application.status != S.ADMINISTRATIVE_REVIEW:
        raise InvalidTransitionError(application.status, to_status, 'application is not escalated')

    if to_status == S.DOCUMENT_VERIFICATION:
        if not documents.lineages(application).filter(locked_at__isnull=False).exists():
            raise InvalidTransitionError(application.status, to_status, 'no document reached the attempt limit')
        documents.reopen_locked(application, int(conf.get('MAX_ATTEMPTS')))
    elif to_status == S.PAYMENT_VALIDATION:
        if not payments.lineages(application).filter(locked_at__isnull=False).exists():
            raise InvalidTransitionError(application.status, to_status, 'the payment did not reach the attempt limit')
        if not documents_verified(application):
            raise InvalidTransitionError(application.status, to_status, 'documents are not verified')
        payments.reopen_locked(application, int(conf.get('MAX_ATTEMPTS')))
    application.admin_remarks = remarks
    state_machine.override(application, to_status, actor=actor, reason=remarks[:255] or 'escalation resolved',
                           extra_fields=('admin_remarks',))

    result = Result(application, emit([intent(application.applicant_id, NotificationKind.ESCALATION_RESOLVED,
                                              application_id=application.pk, status=to_status,
                                              remarks=remarks)]))
    if to_status == S.APPROVED:
        result.extend(health_cards.issue_for(application, actor).notifications)
    log_action(user=actor, action='escalation_resolve', object_type='application', object_id=application.pk,
               detail={'to': to_status})
    return result


@atomic_operation
def reopen(application_id: int, actor, reason: str = '') -> Result:
    require_role(actor, OVERRIDE_ROLES, 'reopen application')
    application = lock_application(application_id)
    if application.status != S.REJECTED:
        raise InvalidTransitionError(application.status, S.DRAFT, 'only rejected applications can be reopened')
    others = (Application.objects.filter(applicant_id=application.applicant_id)
              .exclude(pk=application.pk).exclude(status__in=TERMINAL_STATUSES))
    if others.exists():
        raise ConflictError('The applicant already has another open application.')
    reason = clean_text(reason, 255)
    # earlier rounds keep their lineages and rejections; the applicant starts over
    application.review_round += 1
    try:
        with transaction.atomic():
            state_machine.override(application, S.DRAFT, actor=actor, reason=reason or 'reopened',
                                   extra_fields=('review_round',))
    except IntegrityError as exc:
        raise ConflictError('The applicant already has another open application.') from exc
    log_action(user=actor, action='application_reopen', object_type='application', object_id=application.pk,
               detail={'round': application.review_round})
    return Result(application, emit([intent(application.applicant_id, NotificationKind.APPLICATION_REOPENED,
                                            application_id=application.pk, reason=reason)]))


@atomic_operation
def _expire_one(application_id: int, cutoff: datetime.datetime, now: datetime.datetime) -> bool:
    application = lock_application(application_id)
    if application.updated_at >= cutoff or not state_machine.can_fire(application, E.EXPIRE):
        return False
    _cancel_active_bookings(application, now)
    state_machine.fire(application, E.EXPIRE, reason='inactive past the application timeout')
    emit([intent(application.applicant_id, NotificationKind.APPLICATION_EXPIRED, application_id=application.pk)])
    return True


def expire_stale(now: Optional[datetime.datetime] = None) -> List[int]:
    """Expire non-terminal, non-escalated applications idle past the timeout."""
    now = now or timezone.now()
    cutoff = now - datetime.timedelta(days=int(conf.get('APPLICATION_TIMEOUT_DAYS')))
    candidates = (Application.objects
                  .filter(updated_at__lt=cutoff)
                  .exclude(status__in=TERMINAL_STATUSES)
                  .exclude(status=S.ADMINISTRATIVE_REVIEW)
                  .values_list('pk', flat=True))
    expired = []
    for application_id in list(candidates):
        try:
            if _expire_one(application_id, cutoff, now):
                expired.append(application_id)
        except WorkflowError:
            logger.exception('could not expire application %s', application_id)
    if expired:
        logger.info('expired %d stale applications', len(expired))
    return expired
