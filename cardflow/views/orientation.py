"""
Orientation schedule and booking endpoints.

Applicants list open sessions, book and cancel; inspectors check
attendees in (by booking id or the QR payload printed on the booking)
and mark the orientation complete.
"""
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated

from cardflow.models import OrientationSchedule
from cardflow.permissions import IsApplicantRole, IsReviewerRole, IsStaffRole
from cardflow.responses import ok
from cardflow.serializers.scheduling import (
    BookingIdSerializer, BookSerializer, CheckInSerializer, ScheduleCreateSerializer, booking_data, schedule_data,
)
from cardflow.services import scheduling
from cardflow.services.errors import NotFoundError


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def available_schedules(request):
    return ok([schedule_data(s) for s in scheduling.list_available()])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def create_schedule(request):
    s = ScheduleCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    schedule = scheduling.create_schedule(
        date=vd['date'], time=vd['time'], end_time=vd.get('endTime'),
        venue_name=vd['venueName'], venue_address=vd.get('venueAddress', ''),
        venue_capacity=vd.get('venueCapacity'), instructor=vd.get('instructor', ''),
        total_slots=vd['totalSlots'], actor=request.user,
    )
    return ok(schedule_data(schedule), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsStaffRole])
def schedule_roster(request, pk: int):
    """Bookings of one session, for the inspector at the door."""
    schedule = OrientationSchedule.objects.filter(pk=pk).first()
    if schedule is None:
        raise NotFoundError.of('OrientationSchedule', pk)
    bookings = schedule.bookings.select_related('user').order_by('booked_at')
    return ok({'schedule': schedule_data(schedule), 'bookings': [booking_data(b) for b in bookings]})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApplicantRole])
def book_orientation(request):
    s = BookSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = scheduling.book(s.validated_data['applicationId'], s.validated_data['scheduleId'], request.user)
    return ok(booking_data(result.value), result.notifications, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_orientation(request):
    s = BookingIdSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = scheduling.cancel(s.validated_data['bookingId'], request.user)
    return ok(booking_data(result.value), result.notifications)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def check_in(request):
    s = CheckInSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = scheduling.check_in(s.validated_data.get('bookingId'), request.user,
                                 qr_code=s.validated_data.get('qrCode'))
    return ok(booking_data(result.value), result.notifications)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def complete_orientation(request):
    s = BookingIdSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = scheduling.complete(s.validated_data['bookingId'], request.user)
    return ok(booking_data(result.value), result.notifications)
