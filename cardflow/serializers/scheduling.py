from rest_framework import serializers


class ScheduleCreateSerializer(serializers.Serializer):
    date = serializers.DateField()
    time = serializers.TimeField()
    endTime = serializers.TimeField(required=False, allow_null=True)
    venueName = serializers.CharField(max_length=255)
    venueAddress = serializers.CharField(max_length=255, required=False, allow_blank=True)
    venueCapacity = serializers.IntegerField(min_value=1, required=False)
    instructor = serializers.CharField(max_length=255, required=False, allow_blank=True)
    totalSlots = serializers.IntegerField(min_value=1, max_value=1000)

    def validate(self, attrs):
        end = attrs.get('endTime')
        if end is not None and end <= attrs['time']:
            raise serializers.ValidationError({'endTime': 'End time must be after the start time.'})
        return attrs


class BookSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)
    scheduleId = serializers.IntegerField(min_value=1)


class BookingIdSerializer(serializers.Serializer):
    bookingId = serializers.IntegerField(min_value=1)


class CheckInSerializer(serializers.Serializer):
    bookingId = serializers.IntegerField(min_value=1, required=False)
    qrCode = serializers.CharField(max_length=128, required=False)

    def validate(self, attrs):
        if not attrs.get('bookingId') and not attrs.get('qrCode'):
            raise serializers.ValidationError('Either bookingId or qrCode is required.')
        return attrs


def schedule_data(schedule) -> dict:
    return {
        'id': schedule.id,
        'date': schedule.date.isoformat(),
        'time': schedule.time.strftime('%H:%M'),
        'endTime': schedule.end_time.strftime('%H:%M') if schedule.end_time else None,
        'venue': schedule.venue,
        'instructor': schedule.instructor,
        'totalSlots': schedule.total_slots,
        'availableSlots': schedule.available_slots,
        'isAvailable': schedule.is_available,
    }


def booking_data(booking) -> dict:
    return {
        'id': booking.id,
        'applicationId': booking.application_id,
        'userId': booking.user_id,
        'scheduleId': booking.schedule_id,
        'status': booking.status,
        'qrCode': booking.qr_code,
        'bookedAt': booking.booked_at.isoformat(),
        'checkedInAt': booking.checked_in_at.isoformat() if booking.checked_in_at else None,
        'completedAt': booking.completed_at.isoformat() if booking.completed_at else None,
    }
