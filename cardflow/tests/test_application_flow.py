import datetime

import pytest
from django.utils import timezone

from cardflow.models import (
    Application, ApplicationStatus as S, ApplicationTransition, BookingStatus, HealthCard, Notification,
)
from cardflow.services import applications, scheduling, state_machine
from cardflow.services.access import ReviewContext
from cardflow.services.errors import (
    AuthorizationError, ConflictError, InvalidTransitionError, LockedError,
)
from cardflow.services.review_protocol import Decision
from cardflow.services.state_machine import ApplicationEvent as E

PAYMENT = {'method': 'gcash', 'amount': '50.00', 'serviceFee': '10.00', 'netAmount': '60.00'}

pytestmark = pytest.mark.django_db


def statuses(application):
    return list(ApplicationTransition.objects.filter(application=application).values_list('to_status', flat=True))


def reject_latest(application, code, context):
    artifact = application.artifacts.filter(lineage__key=f'document:{code}').order_by('-attempt_number').first()
    return applications.review_document(artifact.pk, Decision.REJECT, context, category='quality_issue',
                                        reason='unreadable')


def test_create_draft_snapshots_orientation_requirement(applicant, food_category):
    application = applications.create_draft(applicant, food_category.pk).value
    assert application.status == S.DRAFT
    assert application.orientation_required is True
    food_category.requires_orientation = False
    food_category.save()
    application.refresh_from_db()
    assert application.orientation_required is True


def test_only_one_open_application_per_applicant(applicant, food_category):
    applications.create_draft(applicant, food_category.pk)
    with pytest.raises(ConflictError):
        applications.create_draft(applicant, food_category.pk)


def test_staff_cannot_create_drafts(reviewer, food_category):
    with pytest.raises(AuthorizationError):
        applications.create_draft(reviewer, food_category.pk)


def test_submit_requires_every_document(applicant, food_category):
    application = applications.create_draft(applicant, food_category.pk).value
    applications.submit_document(application.pk, 'valid_id', 'storage/id.jpg', applicant)
    with pytest.raises(InvalidTransitionError) as exc:
        applications.submit(application.pk, applicant)
    assert 'picture' in str(exc.value.detail)
    application.refresh_from_db()
    assert application.status == S.DRAFT


def test_submit_notifies_applicant_and_reviewers(applicant, reviewer, submitted):
    application = submitted(applicant)
    assert application.status == S.SUBMITTED
    assert application.submitted_at is not None
    recipients = set(Notification.objects.filter(kind='application_submitted').values_list('recipient_id', flat=True))
    assert recipients == {applicant.pk, reviewer.pk}


def test_full_path_with_orientation(applicant, inspector, reviewer, context, orientation_pending, make_schedule):
    application = orientation_pending
    assert application.status == S.ORIENTATION_PENDING
    assert Notification.objects.filter(recipient=applicant, kind='orientation_required').exists()

    schedule = make_schedule(total_slots=2)
    booking = scheduling.book(application.pk, schedule.pk, applicant).value
    start = schedule.starts_at
    scheduling.check_in(booking.pk, inspector, now=start + datetime.timedelta(minutes=1))
    scheduling.complete(booking.pk, inspector, now=start + datetime.timedelta(minutes=45))

    application.refresh_from_db()
    assert application.status == S.UNDER_REVIEW
    assert application.orientation_completed is True

    result = applications.advance(application.pk, E.APPROVE, reviewer, 'all good')
    assert result.value.status == S.APPROVED
    kinds = [n.kind for n in result.notifications]
    assert 'application_approved' in kinds
    assert 'health_card_issued' in kinds
    assert HealthCard.objects.filter(application=application, status='active').count() == 1

    assert statuses(application) == [
        S.SUBMITTED, S.DOCUMENT_VERIFICATION, S.PAYMENT_VALIDATION, S.ORIENTATION_PENDING,
        S.ORIENTATION_SCHEDULED, S.ATTENDANCE_VALIDATION, S.UNDER_REVIEW, S.APPROVED,
    ]
    first = ApplicationTransition.objects.filter(application=application).first()
    assert first.from_status == S.DRAFT
    assert first.actor == applicant


def test_no_orientation_goes_straight_to_review(applicant, context, non_food_category, submitted,
                                                verify_documents, pay):
    application = submitted(applicant, non_food_category)
    verify_documents(application, context)
    assert application.status == S.PAYMENT_VALIDATION
    pay(application, applicant, context)
    assert application.status == S.UNDER_REVIEW
    assert not {S.ORIENTATION_PENDING, S.ORIENTATION_SCHEDULED, S.ATTENDANCE_VALIDATION} & set(statuses(application))


def test_payment_stage_can_be_switched_off(settings, applicant, context, non_food_category, submitted,
                                           verify_documents):
    settings.CARDFLOW = {'PAYMENT_VALIDATION_ENABLED': False}
    application = submitted(applicant, non_food_category)
    verify_documents(application, context)
    assert application.status == S.UNDER_REVIEW
    with pytest.raises(InvalidTransitionError):
        applications.submit_payment(application.pk, 'GC-1', dict(PAYMENT), applicant)


def test_document_revision_cycle(applicant, context, submitted):
    application = submitted(applicant)
    reject_latest(application, 'picture', context)
    application.refresh_from_db()
    assert application.status == S.DOCUMENTS_NEED_REVISION

    applications.submit_document(application.pk, 'picture', 'storage/picture-2.jpg', applicant)
    application.refresh_from_db()
    assert application.status == S.DOCUMENT_VERIFICATION
    resubmitted = Notification.objects.filter(kind='document_resubmitted')
    assert resubmitted.count() == 1


def test_payment_revision_cycle(applicant, context, submitted, verify_documents):
    application = verify_documents(submitted(applicant), context)
    artifact = applications.submit_payment(application.pk, 'GC-1', dict(PAYMENT), applicant).value
    applications.review_payment(artifact.pk, Decision.REJECT, context, category='reference_not_found',
                                reason='no such transaction')
    application.refresh_from_db()
    assert application.status == S.PAYMENT_NEEDS_REVISION

    second = applications.submit_payment(application.pk, 'GC-2', dict(PAYMENT), applicant)
    application.refresh_from_db()
    assert application.status == S.PAYMENT_VALIDATION
    assert second.value.attempt_number == 2
    assert second.notifications[0].kind == 'payment_resubmitted'


def test_three_rejections_escalate(applicant, context, submitted):
    application = submitted(applicant)
    for attempt in (1, 2, 3):
        result = reject_latest(application, 'valid_id', context)
        assert result.value.attempt_number == attempt
        if attempt < 3:
            applications.submit_document(application.pk, 'valid_id', f'storage/id-{attempt + 1}.jpg', applicant)
    assert result.value.locked is True
    application.refresh_from_db()
    assert application.status == S.ADMINISTRATIVE_REVIEW
    with pytest.raises(LockedError):
        applications.submit_document(application.pk, 'valid_id', 'storage/id-4.jpg', applicant)
    with pytest.raises(InvalidTransitionError):
        applications.advance(application.pk, E.EXPIRE, context.reviewer)


def test_resolve_escalation_reopens_documents(applicant, superuser, context, submitted):
    application = submitted(applicant)
    for attempt in (1, 2, 3):
        reject_latest(application, 'valid_id', context)
        if attempt < 3:
            applications.submit_document(application.pk, 'valid_id', f'storage/id-{attempt + 1}.jpg', applicant)

    result = applications.resolve_escalation(application.pk, S.DOCUMENT_VERIFICATION, superuser, 'call applicant')
    assert result.value.status == S.DOCUMENT_VERIFICATION
    assert result.notifications[0].kind == 'escalation_resolved'
    artifact = applications.submit_document(application.pk, 'valid_id', 'storage/id-4.jpg', applicant).value
    assert artifact.attempt_number == 4


def test_resolve_escalation_to_approved_issues_card(applicant, superuser, context, submitted):
    application = submitted(applicant)
    for attempt in (1, 2, 3):
        reject_latest(application, 'valid_id', context)
        if attempt < 3:
            applications.submit_document(application.pk, 'valid_id', f'storage/id-{attempt + 1}.jpg', applicant)
    applications.resolve_escalation(application.pk, S.APPROVED, superuser, 'verified in person')
    assert HealthCard.objects.filter(application_id=application.pk).count() == 1


def test_resolve_requires_escalated_application(applicant, superuser, submitted):
    application = submitted(applicant)
    with pytest.raises(InvalidTransitionError):
        applications.resolve_escalation(application.pk, S.APPROVED, superuser)


def test_reject_and_reopen(applicant, reviewer, superuser, context, non_food_category, submitted,
                           verify_documents, pay):
    application = pay(verify_documents(submitted(applicant, non_food_category), context), applicant, context)
    result = applications.advance(application.pk, E.REJECT, reviewer, 'fake certificate')
    assert result.value.status == S.REJECTED
    assert result.value.admin_remarks == 'fake certificate'
    with pytest.raises(InvalidTransitionError):
        applications.advance(application.pk, E.APPROVE, reviewer)

    reopened = applications.reopen(application.pk, superuser, 'appeal accepted').value
    assert reopened.status == S.DRAFT


def test_reopen_refused_when_another_application_is_open(applicant, superuser, reviewer, context,
                                                          non_food_category, food_category, submitted,
                                                          verify_documents, pay):
    application = pay(verify_documents(submitted(applicant, non_food_category), context), applicant, context)
    applications.advance(application.pk, E.REJECT, reviewer, 'incomplete')
    applications.create_draft(applicant, food_category.pk)
    with pytest.raises(ConflictError):
        applications.reopen(application.pk, superuser)


def escalate_documents(application, applicant, context):
    for attempt in (1, 2, 3):
        reject_latest(application, 'valid_id', context)
        if attempt < 3:
            applications.submit_document(application.pk, 'valid_id', f'storage/id-{attempt + 1}.jpg', applicant)
    application.refresh_from_db()
    assert application.status == S.ADMINISTRATIVE_REVIEW
    return application


def escalate_payment(application, applicant, context):
    for attempt in (1, 2, 3):
        artifact = applications.submit_payment(application.pk, f'GC-{attempt}', dict(PAYMENT), applicant).value
        applications.review_payment(artifact.pk, Decision.REJECT, context, category='amount_mismatch',
                                    reason='receipt shows a different amount')
    application.refresh_from_db()
    assert application.status == S.ADMINISTRATIVE_REVIEW
    return application


def test_document_escalation_cannot_skip_to_payment(applicant, superuser, context, submitted):
    application = escalate_documents(submitted(applicant), applicant, context)
    with pytest.raises(InvalidTransitionError):
        applications.resolve_escalation(application.pk, S.PAYMENT_VALIDATION, superuser, 'looks fine')
    application.refresh_from_db()
    assert application.status == S.ADMINISTRATIVE_REVIEW
    assert application.lineages.get(key='document:valid_id').is_locked


def test_payment_escalation_resolves_to_payment_validation(applicant, superuser, context, submitted,
                                                           verify_documents, pay):
    application = escalate_payment(verify_documents(submitted(applicant), context), applicant, context)
    with pytest.raises(InvalidTransitionError):
        applications.resolve_escalation(application.pk, S.DOCUMENT_VERIFICATION, superuser)
    application.refresh_from_db()
    assert application.status == S.ADMINISTRATIVE_REVIEW

    result = applications.resolve_escalation(application.pk, S.PAYMENT_VALIDATION, superuser, 'bank confirmed')
    assert result.value.status == S.PAYMENT_VALIDATION
    pay(application, applicant, context)
    assert application.status == S.ORIENTATION_PENDING
    assert application.artifacts.get(kind='payment', review_status='approved').attempt_number == 4


def test_reopened_application_can_be_approved(applicant, reviewer, superuser, context, non_food_category,
                                              submitted, verify_documents, pay):
    application = pay(verify_documents(submitted(applicant, non_food_category), context), applicant, context)
    applications.advance(application.pk, E.REJECT, reviewer, 'fake certificate')
    reopened = applications.reopen(application.pk, superuser, 'appeal accepted').value
    assert reopened.review_round == 2
    assert [d.code for d in applications.missing_documents(reopened)] == ['picture', 'valid_id']

    for code in ('valid_id', 'picture'):
        artifact = applications.submit_document(application.pk, code, f'storage/{code}-2.jpg', applicant).value
        assert artifact.attempt_number == 1
    assert applications.submit(application.pk, applicant).value.status == S.SUBMITTED
    application.refresh_from_db()
    verify_documents(application, context)
    assert application.status == S.PAYMENT_VALIDATION
    pay(application, applicant, context)
    assert application.status == S.UNDER_REVIEW

    result = applications.advance(application.pk, E.APPROVE, reviewer)
    assert result.value.status == S.APPROVED
    assert HealthCard.objects.filter(application=application, status='active').count() == 1
    assert application.lineages.filter(round=1).count() == 3
    assert application.lineages.filter(round=2).count() == 3
    assert statuses(application)[-7:] == [
        S.REJECTED, S.DRAFT, S.SUBMITTED, S.DOCUMENT_VERIFICATION, S.PAYMENT_VALIDATION, S.UNDER_REVIEW, S.APPROVED,
    ]


def test_reopened_application_keeps_completed_orientation(applicant, inspector, reviewer, superuser, context,
                                                          orientation_pending, make_schedule, verify_documents,
                                                          pay):
    application = orientation_pending
    schedule = make_schedule()
    booking = scheduling.book(application.pk, schedule.pk, applicant).value
    scheduling.check_in(booking.pk, inspector, now=schedule.starts_at + datetime.timedelta(minutes=1))
    scheduling.complete(booking.pk, inspector, now=schedule.starts_at + datetime.timedelta(minutes=45))
    applications.advance(application.pk, E.REJECT, reviewer, 'illegible cedula')
    applications.reopen(application.pk, superuser)

    for code in ('valid_id', 'picture'):
        applications.submit_document(application.pk, code, f'storage/{code}-2.jpg', applicant)
    applications.submit(application.pk, applicant)
    application.refresh_from_db()
    pay(verify_documents(application, context), applicant, context)
    assert application.status == S.UNDER_REVIEW
    assert application.orientation_completed is True


def test_internal_events_cannot_be_requested(applicant, reviewer, submitted):
    application = submitted(applicant)
    with pytest.raises(InvalidTransitionError):
        applications.advance(application.pk, E.DOCUMENTS_VERIFIED, reviewer)
    with pytest.raises(InvalidTransitionError):
        applications.advance(application.pk, E.APPROVE, reviewer)
    application.refresh_from_db()
    assert application.status == S.SUBMITTED


def test_start_document_review_by_reviewer(applicant, reviewer, submitted):
    application = submitted(applicant)
    result = applications.advance(application.pk, E.START_DOCUMENT_REVIEW, reviewer)
    assert result.value.status == S.DOCUMENT_VERIFICATION


def test_get_status_is_scoped(applicant, other_applicant, inspector, submitted):
    application = submitted(applicant)
    assert applications.get_status(application.pk, applicant).pk == application.pk
    assert applications.get_status(application.pk, inspector).pk == application.pk
    with pytest.raises(AuthorizationError):
        applications.get_status(application.pk, other_applicant)


def test_expire_stale_skips_escalated_and_recent(applicant, other_applicant, food_category, submitted):
    stale = submitted(applicant)
    escalated = applications.create_draft(other_applicant, food_category.pk).value
    Application.objects.filter(pk=escalated.pk).update(status=S.ADMINISTRATIVE_REVIEW)
    old = timezone.now() - datetime.timedelta(days=45)
    Application.objects.filter(pk__in=[stale.pk, escalated.pk]).update(updated_at=old)

    assert applications.expire_stale() == [stale.pk]
    stale.refresh_from_db()
    escalated.refresh_from_db()
    assert stale.status == S.EXPIRED
    assert escalated.status == S.ADMINISTRATIVE_REVIEW
    assert applications.expire_stale() == []


def test_expiry_releases_booking(applicant, superuser, orientation_pending, make_schedule):
    schedule = make_schedule(total_slots=1)
    booking = scheduling.book(orientation_pending.pk, schedule.pk, applicant).value
    applications.advance(orientation_pending.pk, E.EXPIRE, superuser, 'withdrawn')
    booking.refresh_from_db()
    schedule.refresh_from_db()
    assert booking.status == BookingStatus.CANCELLED
    assert schedule.available_slots == 1


def test_transition_table_never_leaves_admin_review():
    for event, edges in state_machine.TRANSITIONS.items():
        assert S.ADMINISTRATIVE_REVIEW not in edges, event
        for terminal in (S.APPROVED, S.REJECTED, S.EXPIRED):
            assert terminal not in edges, event


def test_review_context_narrows_to_managed_categories(make_user, food_category, non_food_category):
    scoped = make_user('admin3', 'admin')
    scoped.managed_categories.set([food_category])
    ctx = ReviewContext.for_user(scoped)
    assert ctx.covers(food_category.pk)
    assert not ctx.covers(non_food_category.pk)
