import datetime
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone

from cardflow.models import CardType, DocumentType, JobCategory, OrientationSchedule, Role, User
from cardflow.services import applications
from cardflow.services.access import ReviewContext
from cardflow.services.review_protocol import Decision

PAYMENT = {
    'method': 'gcash',
    'amount': Decimal('50.00'),
    'serviceFee': Decimal('10.00'),
    'netAmount': Decimal('60.00'),
}


@pytest.fixture(autouse=True)
def _clear_throttle_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def make_user(db):
    def _make(username, role=Role.APPLICANT, password='P@ssw0rd1'):
        return User.objects.create_user(username=username, password=password, role=role)
    return _make


@pytest.fixture
def applicant(make_user):
    return make_user('applicant1')


@pytest.fixture
def other_applicant(make_user):
    return make_user('applicant2')


@pytest.fixture
def reviewer(make_user):
    return make_user('admin1', Role.ADMIN)


@pytest.fixture
def superuser(make_user):
    return make_user('super', Role.SUPER)


@pytest.fixture
def inspector(make_user):
    return make_user('inspector1', Role.INSPECTOR)


@pytest.fixture
def context(reviewer):
    return ReviewContext.for_user(reviewer)


@pytest.fixture
def document_types(db):
    return [
        DocumentType.objects.create(code='valid_id', name='Valid Government ID'),
        DocumentType.objects.create(code='picture', name='2x2 ID Picture'),
    ]


@pytest.fixture
def food_category(document_types):
    category = JobCategory.objects.create(
        code='food', name='Food Category', card_type=CardType.YELLOW, requires_orientation=True,
    )
    category.required_documents.set(document_types)
    return category


@pytest.fixture
def non_food_category(document_types):
    category = JobCategory.objects.create(
        code='non_food', name='Non-Food Category', card_type=CardType.GREEN, requires_orientation=False,
    )
    category.required_documents.set(document_types)
    return category


@pytest.fixture
def make_schedule(db):
    def _make(total_slots=5, days_ahead=2, hour=9, **extra):
        day = timezone.localdate() + datetime.timedelta(days=days_ahead)
        return OrientationSchedule.objects.create(
            date=day,
            time=datetime.time(hour, 0),
            venue_name='City Health Office',
            total_slots=total_slots,
            available_slots=total_slots,
            **extra,
        )
    return _make


@pytest.fixture
def submitted(food_category):
    """Create a draft for ``user``, upload every required document and submit it."""
    def _submit(user, category=None):
        category = category or food_category
        application = applications.create_draft(user, category.pk).value
        for doc in category.required_documents.all():
            applications.submit_document(application.pk, doc.code, f'storage/{user.pk}/{doc.code}.jpg', user)
        return applications.submit(application.pk, user).value
    return _submit


@pytest.fixture
def verify_documents():
    def _verify(application, context):
        for artifact in application.artifacts.filter(kind='document', review_status='pending'):
            applications.review_document(artifact.pk, Decision.APPROVE, context)
        application.refresh_from_db()
        return application
    return _verify


@pytest.fixture
def pay():
    def _pay(application, user, context):
        artifact = applications.submit_payment(application.pk, 'GC-0001', dict(PAYMENT), user).value
        applications.review_payment(artifact.pk, Decision.APPROVE, context)
        application.refresh_from_db()
        return application
    return _pay


@pytest.fixture
def orientation_pending(applicant, context, submitted, verify_documents, pay):
    application = submitted(applicant)
    verify_documents(application, context)
    return pay(application, applicant, context)
