"""
Health card issuance, revocation, expiry and verification.
"""
from __future__ import annotations

import datetime
import logging
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from cardflow import conf
from cardflow.models import Application, ApplicationStatus, CardStatus, HealthCard
from .access import OVERRIDE_ROLES, require_role
from .audit import log_action
from .errors import InvalidTransitionError, NotFoundError
from .notifications import NotificationKind, Result, emit, intent
from .text import clean_text
from .tx import atomic_operation

logger = logging.getLogger(__name__)

REGISTRATION_ATTEMPTS = 5


def _next_sequence(year: int) -> int:
    return HealthCard.objects.filter(issued_date__year=year).count() + 1


def registration_number(sequence: int, issued: datetime.date) -> str:
    return f"{conf.get('REGISTRATION_PREFIX')}{sequence:06d}-{issued:%y}"


def verify_url(card: HealthCard) -> str:
    return conf.get('VERIFY_URL_TEMPLATE').format(registration_number=card.registration_number)


def issue_for(application: Application, actor=None) -> Result:
    """Issue the card for a locked, approved application.

    Returns the existing active card unchanged when there is one.
    """
    existing = HealthCard.objects.filter(application=application, status=CardStatus.ACTIVE).first()
    if existing is not None:
        return Result(existing)
    if application.status != ApplicationStatus.APPROVED:
        raise InvalidTransitionError(application.status, ApplicationStatus.APPROVED,
                                     'a health card is only issued for approved applications')

    issued = timezone.localdate()
    expiry = issued + datetime.timedelta(days=int(conf.get('CARD_VALIDITY_DAYS')))
    sequence = _next_sequence(issued.year)
    for _ in range(REGISTRATION_ATTEMPTS):
        try:
            with transaction.atomic():
                card = HealthCard.objects.create(
                    application=application,
                    registration_number=registration_number(sequence, issued),
                    issued_date=issued,
                    expiry_date=expiry,
                    status=CardStatus.ACTIVE,
                    issued_by=actor if getattr(actor, 'pk', None) else None,
                )
            break
        except IntegrityError:
            # a concurrent issuer took this number, or this application got its card first
            existing = HealthCard.objects.filter(application=application, status=CardStatus.ACTIVE).first()
            if existing is not None:
                return Result(existing)
            sequence += 1
    else:
        raise InvalidTransitionError(application.status, ApplicationStatus.APPROVED,
                                     'could not allocate a registration number')

    logger.info('health card %s issued for application %s', card.registration_number, application.pk)
    log_action(user=actor, action='health_card_issue', object_type='health_card', object_id=card.pk,
               detail={'applicationId': application.pk, 'registrationNumber': card.registration_number})
    notices = emit([intent(application.applicant_id, NotificationKind.HEALTH_CARD_ISSUED,
                           application_id=application.pk, healthCardId=card.pk,
                           registrationNumber=card.registration_number,
                           expiryDate=card.expiry_date.isoformat(), verifyUrl=verify_url(card))])
    return Result(card, notices)


@atomic_operation
def issue(application_id: int, actor) -> Result:
    require_role(actor, OVERRIDE_ROLES, 'issue health card')
    application = Application.objects.select_for_update().filter(pk=application_id).first()
    if application is None:
        raise NotFoundError.of('Application', application_id)
    return issue_for(application, actor)


@atomic_operation
def revoke(card_id: int, reason: str, actor) -> Result:
    require_role(actor, OVERRIDE_ROLES, 'revoke health card')
    card = HealthCard.objects.select_for_update().select_related('application').filter(pk=card_id).first()
    if card is None:
        raise NotFoundError.of('HealthCard', card_id)
    if card.status == CardStatus.REVOKED:
        return Result(card)
    card.status = CardStatus.REVOKED
    card.revoked_at = timezone.now()
    card.revoked_reason = clean_text(reason, 255)
    card.save(update_fields=['status', 'revoked_at', 'revoked_reason'])
    logger.info('health card %s revoked', card.registration_number)
    log_action(user=actor, action='health_card_revoke', object_type='health_card', object_id=card.pk,
               detail={'applicationId': card.application_id, 'reason': card.revoked_reason})
    notices = emit([intent(card.application.applicant_id, NotificationKind.HEALTH_CARD_REVOKED,
                           application_id=card.application_id, healthCardId=card.pk,
                           reason=card.revoked_reason)])
    return Result(card, notices)


@atomic_operation
def expire_cards(today: Optional[datetime.date] = None) -> int:
    """Move active cards past their expiry date to ``Expired``."""
    today = today or timezone.localdate()
    due = list(HealthCard.objects.select_for_update().select_related('application')
               .filter(status=CardStatus.ACTIVE, expiry_date__lt=today))
    if not due:
        return 0
    HealthCard.objects.filter(pk__in=[c.pk for c in due]).update(status=CardStatus.EXPIRED)
    emit([intent(c.application.applicant_id, NotificationKind.HEALTH_CARD_EXPIRED,
                 application_id=c.application_id, healthCardId=c.pk,
                 registrationNumber=c.registration_number) for c in due])
    logger.info('expired %d health cards', len(due))
    return len(due)


def verify(registration_number: str) -> dict:
    card = (HealthCard.objects.select_related('application__job_category', 'application__applicant')
            .filter(registration_number=(registration_number or '').strip()).first())
    if card is None:
        raise NotFoundError.of('HealthCard', registration_number)
    today = timezone.localdate()
    holder = card.application.applicant
    return {
        'registrationNumber': card.registration_number,
        'holder': holder.get_full_name() or holder.username,
        'jobCategory': card.application.job_category.name,
        'cardType': card.application.job_category.card_type,
        'issuedDate': card.issued_date.isoformat(),
        'expiryDate': card.expiry_date.isoformat(),
        'status': card.status,
        'valid': card.status == CardStatus.ACTIVE and card.expiry_date >= today,
    }
