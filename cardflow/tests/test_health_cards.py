import datetime
import re

import pytest
from django.utils import timezone

from cardflow.models import Application, ApplicationStatus, CardStatus, HealthCard
from cardflow.services import health_cards
from cardflow.services.errors import AuthorizationError, InvalidTransitionError, NotFoundError

pytestmark = pytest.mark.django_db


@pytest.fixture
def approved_for(food_category):
    def _make(user):
        return Application.objects.create(applicant=user, job_category=food_category,
                                          status=ApplicationStatus.APPROVED)
    return _make


def test_issue_is_idempotent(applicant, superuser, approved_for):
    application = approved_for(applicant)
    first = health_cards.issue(application.pk, superuser)
    second = health_cards.issue(application.pk, superuser)
    assert first.value.pk == second.value.pk
    assert [n.kind for n in first.notifications] == ['health_card_issued']
    assert second.notifications == []
    assert HealthCard.objects.filter(application=application).count() == 1


def test_card_fields(applicant, superuser, approved_for):
    card = health_cards.issue(approved_for(applicant).pk, superuser).value
    today = timezone.localdate()
    assert card.status == CardStatus.ACTIVE
    assert card.issued_date == today
    assert card.expiry_date == today + datetime.timedelta(days=365)
    assert re.fullmatch(rf'\d{{6}}-{today:%y}', card.registration_number)
    assert card.issued_by == superuser


def test_registration_numbers_are_sequential(make_user, superuser, approved_for):
    numbers = []
    for n in range(3):
        card = health_cards.issue(approved_for(make_user(f'holder-{n}')).pk, superuser).value
        numbers.append(card.registration_number)
    yy = f'{timezone.localdate():%y}'
    assert numbers == [f'000001-{yy}', f'000002-{yy}', f'000003-{yy}']


def test_registration_prefix_and_validity_are_configurable(settings, applicant, superuser, approved_for):
    settings.CARDFLOW = {'REGISTRATION_PREFIX': 'DVO-', 'CARD_VALIDITY_DAYS': 30}
    card = health_cards.issue(approved_for(applicant).pk, superuser).value
    assert card.registration_number.startswith('DVO-000001-')
    assert card.expiry_date - card.issued_date == datetime.timedelta(days=30)


def test_issue_requires_approval(applicant, superuser, food_category):
    application = Application.objects.create(applicant=applicant, job_category=food_category,
                                             status=ApplicationStatus.UNDER_REVIEW)
    with pytest.raises(InvalidTransitionError):
        health_cards.issue(application.pk, superuser)
    assert not HealthCard.objects.exists()


def test_issue_requires_override_role(applicant, inspector, approved_for):
    with pytest.raises(AuthorizationError):
        health_cards.issue(approved_for(applicant).pk, inspector)


def test_revoke_twice_is_a_no_op(applicant, superuser, approved_for):
    card = health_cards.issue(approved_for(applicant).pk, superuser).value
    first = health_cards.revoke(card.pk, 'fraudulent documents', superuser)
    revoked_at = first.value.revoked_at
    second = health_cards.revoke(card.pk, 'again', superuser)
    assert second.value.status == CardStatus.REVOKED
    assert second.value.revoked_at == revoked_at
    assert second.value.revoked_reason == 'fraudulent documents'
    assert second.notifications == []


def test_revoke_unknown_card(superuser):
    with pytest.raises(NotFoundError):
        health_cards.revoke(999, 'missing', superuser)


def test_reissue_after_revocation(applicant, superuser, approved_for):
    application = approved_for(applicant)
    old = health_cards.issue(application.pk, superuser).value
    health_cards.revoke(old.pk, 'lost card', superuser)
    new = health_cards.issue(application.pk, superuser).value
    assert new.pk != old.pk
    assert new.registration_number != old.registration_number


def test_expire_cards(make_user, superuser, approved_for):
    due = health_cards.issue(approved_for(make_user('holder-a')).pk, superuser).value
    fresh = health_cards.issue(approved_for(make_user('holder-b')).pk, superuser).value
    HealthCard.objects.filter(pk=due.pk).update(expiry_date=timezone.localdate() - datetime.timedelta(days=1))

    assert health_cards.expire_cards() == 1
    assert health_cards.expire_cards() == 0
    due.refresh_from_db()
    fresh.refresh_from_db()
    assert due.status == CardStatus.EXPIRED
    assert fresh.status == CardStatus.ACTIVE


def test_verify(applicant, superuser, approved_for):
    card = health_cards.issue(approved_for(applicant).pk, superuser).value
    data = health_cards.verify(f'  {card.registration_number} ')
    assert data['valid'] is True
    assert data['cardType'] == 'yellow'
    assert data['holder'] == applicant.username

    health_cards.revoke(card.pk, 'expired permit', superuser)
    assert health_cards.verify(card.registration_number)['valid'] is False
    with pytest.raises(NotFoundError):
        health_cards.verify('000000-00')
