"""
Django admin registrations for the workflow models.

Mostly read-oriented: status fields are changed through the services so
that transitions stay audited, but the admin is handy for inspecting
lineages, rejections and bookings during support.
"""

from django.contrib import admin

from .models import (
    Application,
    ApplicationTransition,
    Artifact,
    ArtifactLineage,
    AuditEvent,
    DocumentType,
    HealthCard,
    JobCategory,
    Notification,
    OrientationBooking,
    OrientationSchedule,
    RejectionRecord,
    User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'first_name', 'last_name')
    filter_horizontal = ('managed_categories',)


@admin.register(DocumentType)
class DocumentTypeAdmin(admin.ModelAdmin):
    list_display = ('code', 'name')
    search_fields = ('code', 'name')


@admin.register(JobCategory)
class JobCategoryAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'card_type', 'requires_orientation')
    list_filter = ('card_type', 'requires_orientation')
    filter_horizontal = ('required_documents',)


class TransitionInline(admin.TabularInline):
    model = ApplicationTransition
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'actor', 'timestamp', 'reason')
    can_delete = False


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):
    list_display = ('id', 'applicant', 'job_category', 'application_type', 'status', 'updated_at')
    list_filter = ('status', 'job_category', 'application_type')
    search_fields = ('id', 'applicant__username')
    readonly_fields = ('status',)
    inlines = [TransitionInline]


@admin.register(ArtifactLineage)
class ArtifactLineageAdmin(admin.ModelAdmin):
    list_display = ('id', 'application', 'key', 'round', 'max_attempts', 'locked_at')
    list_filter = ('kind', 'round')
    search_fields = ('application__id', 'key')


@admin.register(Artifact)
class ArtifactAdmin(admin.ModelAdmin):
    list_display = ('id', 'lineage', 'kind', 'attempt_number', 'review_status', 'reviewed_by')
    list_filter = ('kind', 'review_status')
    search_fields = ('id', 'payload_ref', 'application__id')


@admin.register(RejectionRecord)
class RejectionRecordAdmin(admin.ModelAdmin):
    list_display = ('lineage', 'attempt_number', 'issue_type', 'category', 'rejected_by', 'was_replaced',
                    'notification_sent')
    list_filter = ('issue_type', 'category', 'was_replaced')
    search_fields = ('lineage__key', 'reason', 'doctor_name')


@admin.register(OrientationSchedule)
class OrientationScheduleAdmin(admin.ModelAdmin):
    list_display = ('id', 'date', 'time', 'venue_name', 'total_slots', 'available_slots', 'is_available')
    list_filter = ('is_available', 'date')


@admin.register(OrientationBooking)
class OrientationBookingAdmin(admin.ModelAdmin):
    list_display = ('id', 'application', 'schedule', 'status', 'booked_at')
    list_filter = ('status',)
    search_fields = ('application__id', 'qr_code')


@admin.register(HealthCard)
class HealthCardAdmin(admin.ModelAdmin):
    list_display = ('registration_number', 'application', 'issued_date', 'expiry_date', 'status')
    list_filter = ('status',)
    search_fields = ('registration_number',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'recipient', 'kind', 'created_at')
    list_filter = ('kind',)


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'action', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
