import datetime
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from cardflow.models import (
    Application, ApplicationStatus, DocumentType, JobCategory, OrientationSchedule, Role, User,
)
from cardflow.services.access import ReviewContext

pytestmark = pytest.mark.django_db


def run(name, *args):
    out = StringIO()
    call_command(name, *args, stdout=out, stderr=StringIO())
    return out.getvalue()


def test_seed_catalog_is_idempotent():
    run('seed_catalog')
    run('seed_catalog')
    assert DocumentType.objects.count() == 9
    food = JobCategory.objects.get(code='food')
    assert food.requires_orientation is True
    assert food.card_type == 'yellow'
    assert set(food.required_documents.values_list('code', flat=True)) == {
        'valid_id', 'picture', 'chest_xray', 'urinalysis', 'stool_exam', 'cedula',
    }
    assert JobCategory.objects.get(code='skin_to_skin').requires_orientation is False


def test_generate_orientation_schedules_skips_existing():
    start = timezone.localdate() + datetime.timedelta(days=10)
    out = run('generate_orientation_schedules', '--start', start.isoformat(), '--days', '2', '--slots', '12')
    assert 'Created 4 schedules, skipped 0 existing.' in out
    schedule = OrientationSchedule.objects.order_by('date', 'time').first()
    assert (schedule.date, schedule.time, schedule.end_time) == (start, datetime.time(9), datetime.time(11))
    assert schedule.total_slots == schedule.available_slots == 12

    out = run('generate_orientation_schedules', '--start', start.isoformat(), '--days', '3')
    assert 'Created 2 schedules, skipped 4 existing.' in out
    assert OrientationSchedule.objects.count() == 6


def test_ensure_test_users_resets_existing(make_user):
    run('seed_catalog')
    user = make_user('admin1', role=Role.APPLICANT)
    user.is_active = False
    user.save()
    run('ensure_test_users')
    user.refresh_from_db()
    assert user.role == Role.ADMIN
    assert user.is_active
    assert user.check_password('123456')
    assert set(User.objects.values_list('username', flat=True)) >= {
        'applicant1', 'admin1', 'admin_food', 'inspector1', 'super',
    }


def test_ensure_test_users_scopes_food_administrator():
    run('seed_catalog')
    run('ensure_test_users', '--password', 'Demo-pass1')
    run('ensure_test_users', '--password', 'Demo-pass1')
    scoped = User.objects.get(username='admin_food')
    assert scoped.role == Role.ADMIN
    assert scoped.check_password('Demo-pass1')
    assert list(scoped.managed_categories.values_list('code', flat=True)) == ['food']
    assert not User.objects.get(username='admin1').managed_categories.exists()

    ctx = ReviewContext.for_user(scoped)
    assert ctx.covers(JobCategory.objects.get(code='food').pk)
    assert not ctx.covers(JobCategory.objects.get(code='non_food').pk)


def test_ensure_test_users_requires_catalog():
    with pytest.raises(CommandError, match='run seed_catalog first'):
        run('ensure_test_users')
    assert not User.objects.filter(username='admin_food').exists()


def test_expiry_commands_report_counts(applicant, food_category):
    application = Application.objects.create(applicant=applicant, job_category=food_category,
                                             status=ApplicationStatus.SUBMITTED)
    Application.objects.filter(pk=application.pk).update(
        updated_at=timezone.now() - datetime.timedelta(days=90),
    )
    assert '1 applications expired.' in run('expire_applications')
    application.refresh_from_db()
    assert application.status == ApplicationStatus.EXPIRED
    assert '0 health cards expired.' in run('expire_health_cards')


def test_sweep_no_shows_reports_counts():
    assert '0 bookings marked missed, 0 failed.' in run('sweep_no_shows')
