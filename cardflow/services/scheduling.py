"""
Orientation slot scheduling.

Slots are counted on the schedule row itself.  Every change to
``available_slots`` is a conditional ``UPDATE`` (decrement only while
slots remain, increment only while below the total), so concurrent
``book``/``cancel``/``sweep_no_shows`` calls can never push the counter
outside ``[0, total_slots]`` even without a schedule row lock.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from cardflow import conf
from cardflow.models import (
    ACTIVE_BOOKING_STATUSES, ApplicationStatus, BookingStatus, OrientationBooking, OrientationSchedule,
)
from . import state_machine
from .access import ORIENTATION_STAFF_ROLES, OVERRIDE_ROLES, has_role, require_owner, require_role
from .audit import log_action
from .errors import (
    AlreadyBookedError, InvalidTransitionError, NoCapacityError, NotFoundError,
)
from .notifications import NotificationKind, Result, emit, intent
from .state_machine import ApplicationEvent, lock_application
from .text import clean_text
from .tx import atomic_operation

logger = logging.getLogger(__name__)

RELEASABLE_STATUSES = (BookingStatus.SCHEDULED, BookingStatus.CHECKED_IN)


def qr_payload(application_id: int) -> str:
    return f'EMC-ORIENTATION-{application_id}'


def _schedule_details(schedule: OrientationSchedule) -> dict:
    return {
        'scheduleId': schedule.pk,
        'date': schedule.date.isoformat(),
        'time': schedule.time.strftime('%H:%M'),
        'venue': schedule.venue,
        'instructor': schedule.instructor,
    }


def _lock_booking(booking_id: int) -> OrientationBooking:
    booking = OrientationBooking.objects.select_for_update().select_related('schedule').filter(pk=booking_id).first()
    if booking is None:
        raise NotFoundError.of('OrientationBooking', booking_id)
    return booking


def _application_id_of(booking_id: int) -> int:
    application_id = OrientationBooking.objects.filter(pk=booking_id).values_list('application_id', flat=True).first()
    if application_id is None:
        raise NotFoundError.of('OrientationBooking', booking_id)
    return application_id


def release(booking: OrientationBooking, to_status: str, now: datetime.datetime) -> bool:
    """Move an active booking to ``to_status`` and give its slot back.

    Returns ``False`` when another caller already released it.
    """
    stamp = {BookingStatus.CANCELLED: 'cancelled_at', BookingStatus.MISSED: 'missed_at'}[to_status]
    moved = OrientationBooking.objects.filter(pk=booking.pk, status__in=RELEASABLE_STATUSES).update(
        status=to_status, **{stamp: now}
    )
    if not moved:
        return False
    OrientationSchedule.objects.filter(pk=booking.schedule_id, available_slots__lt=F('total_slots')).update(
        available_slots=F('available_slots') + 1
    )
    booking.status = to_status
    setattr(booking, stamp, now)
    return True


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

def create_schedule(*, date, time, venue_name, total_slots, actor=None, end_time=None,
                    venue_address='', venue_capacity=None, instructor='') -> OrientationSchedule:
    if actor is not None:
        require_role(actor, OVERRIDE_ROLES, 'create orientation schedule')
    if int(total_slots) <= 0:
        raise ValidationError({'totalSlots': 'A schedule needs at least one slot.'})
    return OrientationSchedule.objects.create(
        date=date,
        time=time,
        end_time=end_time,
        venue_name=clean_text(venue_name, 255),
        venue_address=clean_text(venue_address, 255),
        venue_capacity=venue_capacity if venue_capacity is not None else total_slots,
        instructor=clean_text(instructor, 255),
        total_slots=total_slots,
        available_slots=total_slots,
    )


def list_available(now: Optional[datetime.datetime] = None) -> List[OrientationSchedule]:
    now = now or timezone.now()
    local_now = timezone.localtime(now)
    qs = (OrientationSchedule.objects
          .filter(is_available=True, available_slots__gt=0, date__gte=local_now.date())
          .order_by('date', 'time'))
    return [s for s in qs if s.starts_at > now]


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

@atomic_operation
def book(application_id: int, schedule_id: int, actor, now: Optional[datetime.datetime] = None) -> Result:
    now = now or timezone.now()
    application = lock_application(application_id)
    require_owner(actor, application)

    if OrientationBooking.objects.filter(application=application, status__in=ACTIVE_BOOKING_STATUSES).exists():
        raise AlreadyBookedError()
    if not state_machine.can_fire(application, ApplicationEvent.ORIENTATION_BOOKED):
        raise InvalidTransitionError(application.status, ApplicationStatus.ORIENTATION_SCHEDULED,
                                     'orientation cannot be booked in this status')

    schedule = OrientationSchedule.objects.filter(pk=schedule_id).first()
    if schedule is None:
        raise NotFoundError.of('OrientationSchedule', schedule_id)
    if not schedule.is_available or schedule.starts_at <= now:
        raise NoCapacityError('This orientation session is closed, pick another schedule.')

    claimed = OrientationSchedule.objects.filter(
        pk=schedule.pk, is_available=True, available_slots__gt=0
    ).update(available_slots=F('available_slots') - 1)
    if not claimed:
        logger.info('schedule %s full, application %s turned away', schedule.pk, application.pk)
        raise NoCapacityError()

    try:
        with transaction.atomic():
            booking = OrientationBooking.objects.create(
                application=application,
                user_id=application.applicant_id,
                schedule=schedule,
                status=BookingStatus.SCHEDULED,
                qr_code=qr_payload(application.pk),
                booked_at=now,
            )
    except IntegrityError as exc:
        # raising rolls the slot decrement back with the outer transaction
        raise AlreadyBookedError() from exc

    state_machine.fire(application, ApplicationEvent.ORIENTATION_BOOKED, actor=actor,
                       reason=f'booked schedule {schedule.pk}')
    log_action(user=actor, action='orientation_book', object_type='orientation_booking', object_id=booking.pk,
               detail={'scheduleId': schedule.pk, 'applicationId': application.pk})
    notices = emit([intent(application.applicant_id, NotificationKind.ORIENTATION_SCHEDULED,
                           application_id=application.pk, bookingId=booking.pk, qrCode=booking.qr_code,
                           **_schedule_details(schedule))])
    return Result(booking, notices)


@atomic_operation
def cancel(booking_id: int, actor, now: Optional[datetime.datetime] = None) -> Result:
    now = now or timezone.now()
    application = lock_application(_application_id_of(booking_id))
    if not has_role(actor, ORIENTATION_STAFF_ROLES):
        require_owner(actor, application)
    booking = _lock_booking(booking_id)

    if booking.status == BookingStatus.CANCELLED:
        return Result(booking)
    if booking.status not in RELEASABLE_STATUSES:
        raise InvalidTransitionError(booking.status, BookingStatus.CANCELLED)

    if not release(booking, BookingStatus.CANCELLED, now):
        booking.refresh_from_db()
        return Result(booking)
    if state_machine.can_fire(application, ApplicationEvent.ORIENTATION_RELEASED):
        state_machine.fire(application, ApplicationEvent.ORIENTATION_RELEASED, actor=actor,
                           reason='orientation booking cancelled')
    log_action(user=actor, action='orientation_cancel', object_type='orientation_booking', object_id=booking.pk,
               detail={'scheduleId': booking.schedule_id, 'applicationId': application.pk})
    notices = emit([intent(application.applicant_id, NotificationKind.ORIENTATION_CANCELLED,
                           application_id=application.pk, bookingId=booking.pk,
                           **_schedule_details(booking.schedule))])
    return Result(booking, notices)


def _booking_id_for_qr(qr_code: str) -> int:
    booking_id = (OrientationBooking.objects
                  .filter(qr_code=(qr_code or '').strip(), status__in=ACTIVE_BOOKING_STATUSES)
                  .values_list('pk', flat=True).first())
    if booking_id is None:
        raise NotFoundError.of('OrientationBooking', qr_code)
    return booking_id


@atomic_operation
def check_in(booking_id: Optional[int] = None, actor=None, now: Optional[datetime.datetime] = None,
             qr_code: Optional[str] = None) -> Result:
    require_role(actor, ORIENTATION_STAFF_ROLES, 'orientation check-in')
    now = now or timezone.now()
    if booking_id is None:
        booking_id = _booking_id_for_qr(qr_code)
    application = lock_application(_application_id_of(booking_id))
    booking = _lock_booking(booking_id)

    if booking.status != BookingStatus.SCHEDULED:
        raise InvalidTransitionError(booking.status, BookingStatus.CHECKED_IN)
    if now < booking.schedule.starts_at:
        raise InvalidTransitionError(booking.status, BookingStatus.CHECKED_IN, 'the session has not started yet')

    booking.status = BookingStatus.CHECKED_IN
    booking.checked_in_at = now
    booking.checked_in_by = actor
    booking.save(update_fields=['status', 'checked_in_at', 'checked_in_by'])
    state_machine.fire(application, ApplicationEvent.ORIENTATION_CHECKED_IN, actor=actor, reason='checked in')
    log_action(user=actor, action='orientation_check_in', object_type='orientation_booking', object_id=booking.pk,
               detail={'applicationId': application.pk})
    notices = emit([intent(application.applicant_id, NotificationKind.ORIENTATION_CHECKED_IN,
                           application_id=application.pk, bookingId=booking.pk,
                           checkedInAt=now.isoformat())])
    return Result(booking, notices)


@atomic_operation
def complete(booking_id: int, actor, now: Optional[datetime.datetime] = None) -> Result:
    require_role(actor, ORIENTATION_STAFF_ROLES, 'orientation completion')
    now = now or timezone.now()
    application = lock_application(_application_id_of(booking_id))
    booking = _lock_booking(booking_id)

    if booking.status != BookingStatus.CHECKED_IN:
        raise InvalidTransitionError(booking.status, BookingStatus.COMPLETED)
    minimum = datetime.timedelta(minutes=int(conf.get('MIN_ORIENTATION_MINUTES')))
    if booking.checked_in_at and now - booking.checked_in_at < minimum:
        raise InvalidTransitionError(booking.status, BookingStatus.COMPLETED,
                                     f'orientation must last at least {minimum.seconds // 60} minutes')

    booking.status = BookingStatus.COMPLETED
    booking.completed_at = now
    booking.save(update_fields=['status', 'completed_at'])
    application.orientation_completed = True
    state_machine.fire(application, ApplicationEvent.ORIENTATION_COMPLETED, actor=actor,
                       reason='orientation completed', extra_fields=('orientation_completed',))
    log_action(user=actor, action='orientation_complete', object_type='orientation_booking', object_id=booking.pk,
               detail={'applicationId': application.pk})
    notices = emit([intent(application.applicant_id, NotificationKind.ORIENTATION_COMPLETED,
                           application_id=application.pk, bookingId=booking.pk)])
    return Result(booking, notices)


# ---------------------------------------------------------------------------
# No-show sweep
# ---------------------------------------------------------------------------

@dataclass
class SweepReport:
    missed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


@atomic_operation
def _mark_missed(booking_id: int, now: datetime.datetime) -> bool:
    application = lock_application(_application_id_of(booking_id))
    booking = _lock_booking(booking_id)
    if booking.status != BookingStatus.SCHEDULED:
        return False
    if not release(booking, BookingStatus.MISSED, now):
        return False
    if state_machine.can_fire(application, ApplicationEvent.ORIENTATION_RELEASED):
        state_machine.fire(application, ApplicationEvent.ORIENTATION_RELEASED, reason='orientation no-show')
    emit([intent(application.applicant_id, NotificationKind.ORIENTATION_MISSED,
                 application_id=application.pk, bookingId=booking.pk, **_schedule_details(booking.schedule))])
    return True


def sweep_no_shows(now: Optional[datetime.datetime] = None) -> SweepReport:
    """Mark scheduled bookings past start + grace window as ``Missed``.

    Each booking is handled in its own transaction; a failure is logged and
    the sweep carries on with the next booking.
    """
    now = now or timezone.now()
    cutoff = now - datetime.timedelta(minutes=int(conf.get('NO_SHOW_GRACE_MINUTES')))
    candidates = (OrientationBooking.objects
                  .filter(status=BookingStatus.SCHEDULED, schedule__date__lte=timezone.localtime(cutoff).date())
                  .select_related('schedule')
                  .order_by('pk'))
    report = SweepReport()
    for booking in candidates:
        if booking.schedule.starts_at >= cutoff:
            continue
        try:
            if _mark_missed(booking.pk, now):
                report.missed.append(booking.pk)
        except Exception:
            logger.exception('no-show sweep failed for booking %s', booking.pk)
            report.failed.append(booking.pk)
    if report.missed or report.failed:
        logger.info('no-show sweep: %d missed, %d failed', len(report.missed), len(report.failed))
    return report
