"""
Generic rejection / resubmission protocol for reviewable artifacts.

Documents and payments follow exactly the same rules: one open
(pending or approved) submission per lineage, strictly increasing
attempt numbers, an append-only rejection log, and a lineage that
freezes once the attempt ceiling is reached.  The differences between
the two kinds (lineage key, payload validation, rejection categories,
notification kinds) live in a :class:`ReviewPolicy`; the protocol itself
is written once.

Callers are expected to already hold the owning application's row lock
(lock order: application, lineage, artifact).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from cardflow import conf
from cardflow.models import (
    Application, Artifact, ArtifactKind, ArtifactLineage, DocumentType, IssueType,
    PaymentMethod, RejectionRecord, ReviewStatus,
)
from .access import ReviewContext
from .audit import log_action
from .errors import AlreadyReviewedError, ConflictError, LockedError, NotFoundError
from .notifications import NotificationIntent, NotificationKind, emit, intent
from .text import clean_list, clean_text

logger = logging.getLogger(__name__)


class Decision:
    APPROVE = 'approve'
    REJECT = 'reject'
    CHOICES = (APPROVE, REJECT)


class ReviewPolicy:
    """What varies between kinds of reviewable artifact."""
    kind: str = ''
    rejection_categories: Tuple[str, ...] = ('other',)
    approved_kind = ''
    rejected_kind = ''
    referred_kind = ''
    resubmitted_kind = ''

    def lineage_key(self, document_type: Optional[DocumentType] = None) -> str:
        raise NotImplementedError

    def clean_payload(self, payload_ref: str, payload: Optional[dict]) -> Tuple[str, dict]:
        raise NotImplementedError

    def describe(self, lineage: ArtifactLineage) -> str:
        return lineage.key

    def categories_for(self, issue_type: str) -> Tuple[str, ...]:
        if issue_type == IssueType.DOCUMENT_ISSUE:
            return self.rejection_categories
        return ()

    def clean_rejection(self, category, issue_type=None, doctor_name=None, clinic_address=None) -> dict:
        """Validated ``RejectionRecord`` fields describing why an attempt was refused.

        A medical referral sends the applicant to a doctor instead of asking
        for a better scan, so it needs the doctor's name.
        """
        issue_type = issue_type or IssueType.DOCUMENT_ISSUE
        allowed = self.categories_for(issue_type)
        if not allowed:
            raise ValidationError({'issueType': f'{issue_type} does not apply to a {self.kind}.'})
        if category not in allowed:
            raise ValidationError({'category': f'Must be one of: {", ".join(allowed)}.'})
        fields = {'category': category, 'issue_type': issue_type}
        if issue_type == IssueType.MEDICAL_REFERRAL:
            doctor = clean_text(doctor_name, 255)
            if not doctor:
                raise ValidationError({'doctorName': 'A doctor is required for a medical referral.'})
            fields['doctor_name'] = doctor
            fields['clinic_address'] = clean_text(clinic_address, 255)
        return fields


class DocumentPolicy(ReviewPolicy):
    kind = ArtifactKind.DOCUMENT
    rejection_categories = (
        'quality_issue', 'wrong_document', 'expired_document', 'incomplete_document',
        'invalid_document', 'format_issue', 'other',
    )
    # findings on laboratory results that need a doctor's clearance
    medical_categories = (
        'abnormal_xray', 'elevated_urinalysis', 'positive_stool', 'positive_drug_test',
        'neuro_exam_failed', 'hepatitis_consultation', 'other_medical_concern',
    )
    approved_kind = NotificationKind.DOCUMENT_APPROVED
    rejected_kind = NotificationKind.DOCUMENT_REJECTED
    referred_kind = NotificationKind.DOCUMENT_REFERRED
    resubmitted_kind = NotificationKind.DOCUMENT_RESUBMITTED

    def categories_for(self, issue_type):
        if issue_type == IssueType.MEDICAL_REFERRAL:
            return self.medical_categories
        return super().categories_for(issue_type)

    def lineage_key(self, document_type=None):
        if document_type is None:
            raise ValidationError({'documentType': 'A document type is required.'})
        return f'document:{document_type.code}'

    def clean_payload(self, payload_ref, payload):
        ref = clean_text(payload_ref, 255)
        if not ref:
            raise ValidationError({'payloadRef': 'A storage reference is required.'})
        payload = dict(payload or {})
        cleaned = {}
        for key in ('fileName', 'mimeType'):
            if payload.get(key):
                cleaned[key] = clean_text(str(payload[key]), 255)
        if payload.get('size') is not None:
            try:
                cleaned['size'] = max(0, int(payload['size']))
            except (TypeError, ValueError):
                raise ValidationError({'size': 'Size must be an integer.'})
        return ref, cleaned

    def describe(self, lineage):
        return lineage.document_type.name if lineage.document_type_id else lineage.key


class PaymentPolicy(ReviewPolicy):
    kind = ArtifactKind.PAYMENT
    rejection_categories = (
        'invalid_receipt', 'amount_mismatch', 'reference_not_found', 'duplicate_payment', 'other',
    )
    approved_kind = NotificationKind.PAYMENT_APPROVED
    rejected_kind = NotificationKind.PAYMENT_REJECTED
    resubmitted_kind = NotificationKind.PAYMENT_RESUBMITTED

    def lineage_key(self, document_type=None):
        return 'payment'

    @staticmethod
    def _amount(payload: dict, key: str, *, allow_zero=False) -> Decimal:
        try:
            value = Decimal(str(payload.get(key)))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError({key: 'A decimal amount is required.'})
        if not value.is_finite() or value < 0 or (value == 0 and not allow_zero):
            raise ValidationError({key: 'Amount must be positive.'})
        return value.quantize(Decimal('0.01'))

    def clean_payload(self, payload_ref, payload):
        ref = clean_text(payload_ref, 255)
        if not ref:
            raise ValidationError({'payloadRef': 'A payment reference number is required.'})
        payload = dict(payload or {})
        method = payload.get('method')
        if method not in PaymentMethod.values:
            raise ValidationError({'method': f'Must be one of: {", ".join(PaymentMethod.values)}.'})
        amount = self._amount(payload, 'amount')
        fee = self._amount(payload, 'serviceFee', allow_zero=True)
        net = self._amount(payload, 'netAmount')
        if net != amount + fee:
            raise ValidationError({'netAmount': 'Net amount must equal amount plus service fee.'})
        return ref, {
            'method': method,
            'amount': str(amount),
            'serviceFee': str(fee),
            'netAmount': str(net),
        }

    def describe(self, lineage):
        return 'payment'


@dataclass
class SubmitOutcome:
    artifact: Artifact
    attempt_number: int
    resubmission: bool = False


@dataclass
class ReviewOutcome:
    artifact: Artifact
    approved: bool
    attempt_number: int
    locked: bool = False
    remaining_attempts: int = 0
    rejection: Optional[RejectionRecord] = None
    notifications: List[NotificationIntent] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = {'approved': self.approved, 'attemptNumber': self.attempt_number}
        if not self.approved:
            data['locked'] = self.locked
            data['remainingAttempts'] = self.remaining_attempts
        return data


class ArtifactReviewProtocol:

    def __init__(self, policy: ReviewPolicy):
        self.policy = policy

    # -- lineages ------------------------------------------------------

    def open_lineage(self, application: Application, document_type: Optional[DocumentType] = None) -> ArtifactLineage:
        key = self.policy.lineage_key(document_type)
        lineage, _ = ArtifactLineage.objects.get_or_create(
            application=application,
            key=key,
            round=application.review_round,
            defaults={
                'kind': self.policy.kind,
                'document_type': document_type,
                'max_attempts': int(conf.get('MAX_ATTEMPTS')),
            },
        )
        return lineage

    def lineages(self, application: Application):
        """Lineages of the application's current review round."""
        return ArtifactLineage.objects.filter(application=application, kind=self.policy.kind,
                                              round=application.review_round)

    @staticmethod
    def latest(lineage: ArtifactLineage) -> Optional[Artifact]:
        return lineage.artifacts.order_by('-attempt_number').first()

    def outstanding_rejections(self, application: Application) -> List[ArtifactLineage]:
        """Lineages whose latest attempt was rejected and not yet replaced."""
        pending = []
        for lineage in self.lineages(application):
            latest = self.latest(lineage)
            if latest is not None and latest.review_status == ReviewStatus.REJECTED:
                pending.append(lineage)
        return pending

    # -- protocol operations -------------------------------------------

    def submit(self, lineage_id: int, payload_ref: str, payload: Optional[dict] = None, *, submitted_by=None) -> SubmitOutcome:
        lineage = ArtifactLineage.objects.select_for_update().filter(pk=lineage_id, kind=self.policy.kind).first()
        if lineage is None:
            raise NotFoundError.of('Lineage', lineage_id)
        if lineage.is_locked:
            raise LockedError(f'{self.policy.describe(lineage)} reached the maximum of {lineage.max_attempts} attempts')

        # re-read inside the transaction, the lineage lock serializes submitters
        previous = self.latest(lineage)
        if previous is not None and previous.review_status != ReviewStatus.REJECTED:
            raise ConflictError(f'{self.policy.describe(lineage)} already has a {previous.review_status} submission')

        payload_ref, payload = self.policy.clean_payload(payload_ref, payload)
        attempt_number = previous.attempt_number + 1 if previous else 1
        now = timezone.now()
        try:
            with transaction.atomic():
                artifact = Artifact.objects.create(
                    lineage=lineage,
                    application_id=lineage.application_id,
                    kind=self.policy.kind,
                    payload_ref=payload_ref,
                    payload=payload,
                    attempt_number=attempt_number,
                    submitted_by=submitted_by,
                    submitted_at=now,
                )
        except IntegrityError as exc:
            raise ConflictError(f'{self.policy.describe(lineage)} was submitted concurrently') from exc

        if previous is not None:
            Artifact.objects.filter(pk=previous.pk, superseded_by__isnull=True).update(superseded_by=artifact)
            rejection = RejectionRecord.objects.filter(artifact=previous).first()
            if rejection is not None and not rejection.was_replaced:
                rejection.mark_replaced(artifact, now)

        logger.info('%s attempt %d submitted for application %s',
                    lineage.key, attempt_number, lineage.application_id)
        return SubmitOutcome(artifact=artifact, attempt_number=attempt_number, resubmission=previous is not None)

    def review(self, artifact_id: int, decision: str, context: ReviewContext, *, remarks: str = '',
               category: Optional[str] = None, reason: Optional[str] = None,
               specific_issues: Optional[List[str]] = None, issue_type: Optional[str] = None,
               doctor_name: Optional[str] = None, clinic_address: Optional[str] = None) -> ReviewOutcome:
        artifact = (Artifact.objects.select_related('lineage', 'application', 'lineage__document_type')
                    .filter(pk=artifact_id, kind=self.policy.kind).first())
        if artifact is None:
            raise NotFoundError.of('Artifact', artifact_id)
        application = artifact.application
        context.require_reviewer(application)

        if decision not in Decision.CHOICES:
            raise ValidationError({'decision': f'Must be one of: {", ".join(Decision.CHOICES)}.'})
        findings = {}
        if decision == Decision.REJECT:
            findings = self.policy.clean_rejection(category, issue_type, doctor_name, clinic_address)
            reason = clean_text(reason, 2000)
            if not reason:
                raise ValidationError({'reason': 'A rejection reason is required.'})
        remarks = clean_text(remarks, 2000)
        referral = findings.get('issue_type') == IssueType.MEDICAL_REFERRAL
        if referral and not remarks:
            remarks = f"Medical finding: please see {findings['doctor_name']}"
            if findings['clinic_address']:
                remarks += f" at {findings['clinic_address']}"

        now = timezone.now()
        reviewer = context.reviewer
        new_status = ReviewStatus.APPROVED if decision == Decision.APPROVE else ReviewStatus.REJECTED
        # compare-and-swap: only the first reviewer of a pending artifact wins
        updated = Artifact.objects.filter(pk=artifact.pk, review_status=ReviewStatus.PENDING).update(
            review_status=new_status,
            reviewed_by=reviewer,
            reviewed_at=now,
            remarks=remarks,
        )
        if not updated:
            raise AlreadyReviewedError(f'{artifact.kind} {artifact.pk} is no longer pending')
        artifact.refresh_from_db()
        lineage = artifact.lineage
        label = self.policy.describe(lineage)

        log_action(user=reviewer, action=f'{self.policy.kind}_{new_status}', object_type='artifact',
                   object_id=artifact.pk, detail={'applicationId': application.pk, 'attempt': artifact.attempt_number})

        if decision == Decision.APPROVE:
            notices = emit([intent(application.applicant_id, self.policy.approved_kind,
                                   application_id=application.pk, artifactId=artifact.pk, label=label)])
            return ReviewOutcome(artifact=artifact, approved=True, attempt_number=artifact.attempt_number,
                                 notifications=notices)

        rejection = RejectionRecord.objects.create(
            lineage=lineage,
            artifact=artifact,
            rejected_by=reviewer,
            rejected_at=now,
            reason=reason,
            specific_issues=clean_list(specific_issues),
            attempt_number=artifact.attempt_number,
            **findings,
        )
        locked = artifact.attempt_number >= lineage.max_attempts
        remaining = max(0, lineage.max_attempts - artifact.attempt_number)
        if locked:
            ArtifactLineage.objects.filter(pk=lineage.pk, locked_at__isnull=True).update(locked_at=now)
            logger.warning('%s of application %s locked after %d attempts',
                           lineage.key, application.pk, artifact.attempt_number)
            notice = intent(application.applicant_id, NotificationKind.APPLICATION_ESCALATED,
                            application_id=application.pk, artifactId=artifact.pk, label=label,
                            reason=reason, attemptNumber=artifact.attempt_number)
        elif referral:
            notice = intent(application.applicant_id, self.policy.referred_kind,
                            application_id=application.pk, artifactId=artifact.pk, label=label,
                            category=category, reason=reason, doctorName=rejection.doctor_name,
                            clinicAddress=rejection.clinic_address, attemptNumber=artifact.attempt_number,
                            remainingAttempts=remaining)
        else:
            notice = intent(application.applicant_id, self.policy.rejected_kind,
                            application_id=application.pk, artifactId=artifact.pk, label=label,
                            category=category, reason=reason, specificIssues=rejection.specific_issues,
                            attemptNumber=artifact.attempt_number, remainingAttempts=remaining)
        notices = emit([notice])
        rejection.mark_notified()
        return ReviewOutcome(
            artifact=artifact,
            approved=False,
            attempt_number=artifact.attempt_number,
            locked=locked,
            remaining_attempts=remaining,
            rejection=rejection,
            notifications=notices,
        )

    def history(self, lineage_id: int) -> List[RejectionRecord]:
        if not ArtifactLineage.objects.filter(pk=lineage_id, kind=self.policy.kind).exists():
            raise NotFoundError.of('Lineage', lineage_id)
        return list(RejectionRecord.objects.filter(lineage_id=lineage_id).order_by('attempt_number'))

    def reopen_locked(self, application: Application, extra_attempts: int) -> int:
        """Unfreeze locked lineages, granting ``extra_attempts`` more tries."""
        count = 0
        for lineage in self.lineages(application).select_for_update().filter(locked_at__isnull=False):
            lineage.locked_at = None
            lineage.max_attempts = lineage.max_attempts + extra_attempts
            lineage.save(update_fields=['locked_at', 'max_attempts'])
            count += 1
        return count


documents = ArtifactReviewProtocol(DocumentPolicy())
payments = ArtifactReviewProtocol(PaymentPolicy())

PROTOCOLS: Dict[str, ArtifactReviewProtocol] = {
    ArtifactKind.DOCUMENT: documents,
    ArtifactKind.PAYMENT: payments,
}


def protocol_for(kind: str) -> ArtifactReviewProtocol:
    return PROTOCOLS[kind]


def rejection_summary(application: Application) -> dict:
    """Rejections of ``application`` grouped by artifact kind and category."""
    records = RejectionRecord.objects.filter(lineage__application=application).select_related('lineage')
    by_kind: Dict[str, Dict[str, int]] = {}
    by_issue: Dict[str, int] = {}
    total = 0
    for record in records:
        bucket = by_kind.setdefault(record.lineage.kind, {})
        bucket[record.category] = bucket.get(record.category, 0) + 1
        by_issue[record.issue_type] = by_issue.get(record.issue_type, 0) + 1
        total += 1
    locked = ArtifactLineage.objects.filter(application=application, round=application.review_round)
    locked = locked.filter(~Q(locked_at=None))
    return {
        'applicationId': application.pk,
        'total': total,
        'byKind': by_kind,
        'byIssueType': by_issue,
        'lockedLineages': list(locked.values_list('key', flat=True)),
    }
