import datetime
import threading

import pytest
from django.db import connection
from rest_framework.exceptions import ValidationError

from cardflow.models import (
    ACTIVE_BOOKING_STATUSES, Application, ApplicationStatus as S, BookingStatus, OrientationBooking,
    OrientationSchedule,
)
from cardflow.services import audit, scheduling
from cardflow.services.errors import (
    AlreadyBookedError, AuthorizationError, BusyError, InvalidTransitionError, NoCapacityError,
)

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending_for(food_category):
    """An application parked in OrientationPending for ``user``."""
    def _make(user):
        return Application.objects.create(
            applicant=user, job_category=food_category,
            status=S.ORIENTATION_PENDING, orientation_required=True,
        )
    return _make


def assert_slots_balanced(schedule):
    schedule.refresh_from_db()
    active = OrientationBooking.objects.filter(schedule=schedule, status__in=ACTIVE_BOOKING_STATUSES).count()
    assert schedule.available_slots + active == schedule.total_slots
    assert 0 <= schedule.available_slots <= schedule.total_slots


def test_book_decrements_and_moves_application(applicant, pending_for, make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule(total_slots=3)
    result = scheduling.book(application.pk, schedule.pk, applicant)
    booking = result.value
    assert booking.status == BookingStatus.SCHEDULED
    assert booking.qr_code == f'EMC-ORIENTATION-{application.pk}'
    assert result.notifications[0].kind == 'orientation_scheduled'
    application.refresh_from_db()
    assert application.status == S.ORIENTATION_SCHEDULED
    assert_slots_balanced(schedule)
    assert schedule.available_slots == 2


def test_capacity_is_never_oversold(make_user, pending_for, make_schedule):
    schedule = make_schedule(total_slots=2)
    outcomes = []
    for n in range(4):
        user = make_user(f'applicant-{n}')
        try:
            scheduling.book(pending_for(user).pk, schedule.pk, user)
            outcomes.append('ok')
        except NoCapacityError:
            outcomes.append('full')
        assert_slots_balanced(schedule)
    assert outcomes == ['ok', 'ok', 'full', 'full']
    assert schedule.available_slots == 0


def test_double_booking_is_refused(applicant, pending_for, make_schedule):
    application = pending_for(applicant)
    first = make_schedule(total_slots=2)
    second = make_schedule(total_slots=2, hour=14)
    scheduling.book(application.pk, first.pk, applicant)
    with pytest.raises(AlreadyBookedError):
        scheduling.book(application.pk, second.pk, applicant)
    assert_slots_balanced(first)
    assert_slots_balanced(second)
    assert second.available_slots == 2


def test_only_the_applicant_may_book(applicant, other_applicant, pending_for, make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule()
    with pytest.raises(AuthorizationError):
        scheduling.book(application.pk, schedule.pk, other_applicant)


def test_booking_requires_orientation_pending(applicant, food_category, make_schedule):
    application = Application.objects.create(applicant=applicant, job_category=food_category,
                                             status=S.UNDER_REVIEW, orientation_required=True)
    with pytest.raises(InvalidTransitionError):
        scheduling.book(application.pk, make_schedule().pk, applicant)


def test_closed_or_started_sessions_cannot_be_booked(applicant, pending_for, make_schedule):
    application = pending_for(applicant)
    closed = make_schedule(is_available=False)
    started = make_schedule(days_ahead=-1)
    with pytest.raises(NoCapacityError):
        scheduling.book(application.pk, closed.pk, applicant)
    with pytest.raises(NoCapacityError):
        scheduling.book(application.pk, started.pk, applicant)


def test_cancel_is_idempotent(applicant, pending_for, make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule(total_slots=1)
    booking = scheduling.book(application.pk, schedule.pk, applicant).value

    first = scheduling.cancel(booking.pk, applicant)
    second = scheduling.cancel(booking.pk, applicant)
    assert first.value.status == second.value.status == BookingStatus.CANCELLED
    assert second.notifications == []
    schedule.refresh_from_db()
    assert schedule.available_slots == 1
    assert_slots_balanced(schedule)
    application.refresh_from_db()
    assert application.status == S.ORIENTATION_PENDING


def test_cancel_permissions(applicant, other_applicant, inspector, pending_for, make_schedule):
    application = pending_for(applicant)
    booking = scheduling.book(application.pk, make_schedule().pk, applicant).value
    with pytest.raises(AuthorizationError):
        scheduling.cancel(booking.pk, other_applicant)
    assert scheduling.cancel(booking.pk, inspector).value.status == BookingStatus.CANCELLED


def test_check_in_and_complete_timing(applicant, inspector, pending_for, make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule()
    booking = scheduling.book(application.pk, schedule.pk, applicant).value
    start = schedule.starts_at

    with pytest.raises(InvalidTransitionError):
        scheduling.check_in(booking.pk, inspector, now=start - datetime.timedelta(minutes=5))
    with pytest.raises(AuthorizationError):
        scheduling.check_in(booking.pk, applicant, now=start)

    checked = scheduling.check_in(qr_code=booking.qr_code, actor=inspector, now=start).value
    assert checked.status == BookingStatus.CHECKED_IN
    assert checked.checked_in_by == inspector

    with pytest.raises(InvalidTransitionError):
        scheduling.complete(booking.pk, inspector, now=start + datetime.timedelta(minutes=5))
    done = scheduling.complete(booking.pk, inspector, now=start + datetime.timedelta(minutes=30)).value
    assert done.status == BookingStatus.COMPLETED
    application.refresh_from_db()
    assert application.status == S.UNDER_REVIEW
    assert application.orientation_completed is True
    assert_slots_balanced(schedule)


def test_booking_events_appear_in_application_trail(applicant, other_applicant, inspector, pending_for,
                                                    make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule()
    first = scheduling.book(application.pk, schedule.pk, applicant).value
    scheduling.cancel(first.pk, applicant)
    booking = scheduling.book(application.pk, schedule.pk, applicant).value
    scheduling.check_in(booking.pk, inspector, now=schedule.starts_at)
    scheduling.complete(booking.pk, inspector, now=schedule.starts_at + datetime.timedelta(minutes=30))
    scheduling.book(pending_for(other_applicant).pk, schedule.pk, other_applicant)

    assert [e.action for e in audit.application_trail(application.pk)] == [
        'orientation_book', 'orientation_cancel', 'orientation_book', 'orientation_check_in',
        'orientation_complete',
    ]


def test_complete_requires_check_in(applicant, inspector, pending_for, make_schedule):
    application = pending_for(applicant)
    booking = scheduling.book(application.pk, make_schedule().pk, applicant).value
    with pytest.raises(InvalidTransitionError):
        scheduling.complete(booking.pk, inspector)


def test_cancel_after_completion_is_refused(applicant, inspector, pending_for, make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule()
    booking = scheduling.book(application.pk, schedule.pk, applicant).value
    start = schedule.starts_at
    scheduling.check_in(booking.pk, inspector, now=start)
    scheduling.complete(booking.pk, inspector, now=start + datetime.timedelta(hours=1))
    with pytest.raises(InvalidTransitionError):
        scheduling.cancel(booking.pk, applicant)


def test_sweep_marks_no_shows_once(applicant, pending_for, make_schedule):
    application = pending_for(applicant)
    schedule = make_schedule(total_slots=1)
    booking = scheduling.book(application.pk, schedule.pk, applicant).value
    start = schedule.starts_at

    assert scheduling.sweep_no_shows(now=start + datetime.timedelta(minutes=10)).missed == []

    report = scheduling.sweep_no_shows(now=start + datetime.timedelta(minutes=31))
    assert report.missed == [booking.pk]
    booking.refresh_from_db()
    assert booking.status == BookingStatus.MISSED
    assert booking.missed_at is not None
    application.refresh_from_db()
    assert application.status == S.ORIENTATION_PENDING
    assert_slots_balanced(schedule)
    assert schedule.available_slots == 1

    again = scheduling.sweep_no_shows(now=start + datetime.timedelta(hours=2))
    assert again.missed == [] and again.failed == []
    schedule.refresh_from_db()
    assert schedule.available_slots == 1


def test_sweep_continues_past_failures(make_user, pending_for, make_schedule, monkeypatch):
    schedule = make_schedule(total_slots=3)
    bookings = []
    for n in range(3):
        user = make_user(f'applicant-{n}')
        bookings.append(scheduling.book(pending_for(user).pk, schedule.pk, user).value)

    original = scheduling._mark_missed

    def flaky(booking_id, now):
        if booking_id == bookings[1].pk:
            raise RuntimeError('storage hiccup')
        return original(booking_id, now)

    monkeypatch.setattr(scheduling, '_mark_missed', flaky)
    report = scheduling.sweep_no_shows(now=schedule.starts_at + datetime.timedelta(hours=1))
    assert report.missed == [bookings[0].pk, bookings[2].pk]
    assert report.failed == [bookings[1].pk]
    assert_slots_balanced(schedule)


def test_list_available_hides_full_closed_and_past(applicant, pending_for, make_schedule):
    open_one = make_schedule(total_slots=2)
    full = make_schedule(total_slots=1, hour=14)
    make_schedule(is_available=False, hour=16)
    make_schedule(days_ahead=-1)
    scheduling.book(pending_for(applicant).pk, full.pk, applicant)
    assert [s.pk for s in scheduling.list_available()] == [open_one.pk]


def test_create_schedule_validation(superuser, applicant):
    day = datetime.date.today() + datetime.timedelta(days=3)
    with pytest.raises(ValidationError):
        scheduling.create_schedule(date=day, time=datetime.time(9), venue_name='Hall', total_slots=0)
    with pytest.raises(AuthorizationError):
        scheduling.create_schedule(date=day, time=datetime.time(9), venue_name='Hall', total_slots=5,
                                   actor=applicant)
    schedule = scheduling.create_schedule(date=day, time=datetime.time(9), venue_name='<b>Hall</b>',
                                          total_slots=5, actor=superuser)
    assert schedule.available_slots == schedule.total_slots == schedule.venue_capacity == 5
    assert schedule.venue_name == 'Hall'


@pytest.mark.django_db(transaction=True)
@pytest.mark.parametrize('racers, slots', [(2, 1), (5, 2)])
def test_concurrent_booking_never_oversells(settings, make_user, pending_for, make_schedule, racers, slots):
    settings.CARDFLOW = {'TX_RETRIES': 20}
    schedule = make_schedule(total_slots=slots)
    contenders = []
    for n in range(racers):
        user = make_user(f'racer-{n}')
        contenders.append((pending_for(user).pk, user))

    barrier = threading.Barrier(len(contenders))
    outcomes = []
    lock = threading.Lock()

    def race(application_id, user):
        result = 'busy'
        try:
            barrier.wait()
            for _ in range(50):
                try:
                    scheduling.book(application_id, schedule.pk, user)
                    result = 'ok'
                    break
                except BusyError:
                    continue
                except NoCapacityError:
                    result = 'full'
                    break
        finally:
            with lock:
                outcomes.append(result)
            connection.close()

    threads = [threading.Thread(target=race, args=c) for c in contenders]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ['full'] * (racers - slots) + ['ok'] * slots
    schedule = OrientationSchedule.objects.get(pk=schedule.pk)
    assert schedule.available_slots == 0
    assert OrientationBooking.objects.filter(schedule=schedule, status=BookingStatus.SCHEDULED).count() == slots
    assert_slots_balanced(schedule)
