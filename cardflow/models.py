"""
Database models for the health-card issuance backend.

These models capture the core concepts of the workflow: applicants and
staff users, job categories with their document requirements, the
application itself with its audited status history, reviewable
artifacts (document uploads and payments) grouped into lineages,
orientation schedules and bookings, and the issued health card.

Status vocabularies are declared once here as ``TextChoices`` classes
and referenced by name everywhere else; no status literal should be
spelled out in service or view code.
"""
from __future__ import annotations

import datetime

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

class Role(models.TextChoices):
    APPLICANT = 'applicant', 'Applicant'
    ADMIN = 'admin', 'Administrator'
    INSPECTOR = 'inspector', 'Inspector'
    SUPER = 'super', 'Super Administrator'


class ApplicationType(models.TextChoices):
    NEW = 'new', 'New'
    RENEW = 'renew', 'Renew'


class ApplicationStatus(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    SUBMITTED = 'submitted', 'Submitted'
    DOCUMENT_VERIFICATION = 'document_verification', 'Document Verification'
    DOCUMENTS_NEED_REVISION = 'documents_need_revision', 'Documents Need Revision'
    PAYMENT_VALIDATION = 'payment_validation', 'Payment Validation'
    PAYMENT_NEEDS_REVISION = 'payment_needs_revision', 'Payment Needs Revision'
    ORIENTATION_PENDING = 'orientation_pending', 'Orientation Pending'
    ORIENTATION_SCHEDULED = 'orientation_scheduled', 'Orientation Scheduled'
    ATTENDANCE_VALIDATION = 'attendance_validation', 'Attendance Validation'
    UNDER_REVIEW = 'under_review', 'Under Review'
    ADMINISTRATIVE_REVIEW = 'administrative_review', 'Under Administrative Review'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    EXPIRED = 'expired', 'Expired'


# Statuses that close an application cycle.
TERMINAL_STATUSES = (
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.EXPIRED,
)


class ArtifactKind(models.TextChoices):
    DOCUMENT = 'document', 'Document'
    PAYMENT = 'payment', 'Payment'


class ReviewStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'


class IssueType(models.TextChoices):
    DOCUMENT_ISSUE = 'document_issue', 'Document Issue'
    MEDICAL_REFERRAL = 'medical_referral', 'Medical Referral'


class PaymentMethod(models.TextChoices):
    GCASH = 'gcash', 'Gcash'
    MAYA = 'maya', 'Maya'
    BARANGAY_HALL = 'barangay_hall', 'Barangay Hall'
    CITY_HALL = 'city_hall', 'City Hall'


class BookingStatus(models.TextChoices):
    SCHEDULED = 'scheduled', 'Scheduled'
    CHECKED_IN = 'checked_in', 'Checked In'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    MISSED = 'missed', 'Missed'


# Bookings in these statuses hold a slot.
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.SCHEDULED,
    BookingStatus.CHECKED_IN,
    BookingStatus.COMPLETED,
)


class CardStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    REVOKED = 'revoked', 'Revoked'
    EXPIRED = 'expired', 'Expired'


class CardType(models.TextChoices):
    YELLOW = 'yellow', 'Food Handler'
    GREEN = 'green', 'Non-Food Worker'
    PINK = 'pink', 'Skin-to-Skin Contact'


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class DocumentType(models.Model):
    """A kind of supporting document an applicant may have to upload."""
    code = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    def __str__(self) -> str:
        return self.name


class JobCategory(models.Model):
    """A health-card category such as *Food Handler*.

    The category decides which documents are required and whether the
    applicant has to attend an orientation before the card is issued.
    """
    code = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    card_type = models.CharField(max_length=16, choices=CardType.choices, default=CardType.YELLOW)
    requires_orientation = models.BooleanField(default=False)
    required_documents = models.ManyToManyField(DocumentType, blank=True, related_name='job_categories')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = 'job categories'

    def __str__(self) -> str:
        return self.name


class User(AbstractUser):
    """Custom user model carrying a workflow role.

    ``managed_categories`` narrows which applications an administrator
    may review; an empty set means every category.
    """
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.APPLICANT, db_index=True)
    managed_categories = models.ManyToManyField(JobCategory, blank=True, related_name='managers')

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------

class Application(models.Model):
    """One applicant's request for a health card of a given category."""
    applicant = models.ForeignKey(User, on_delete=models.CASCADE, related_name='applications')
    job_category = models.ForeignKey(JobCategory, on_delete=models.PROTECT, related_name='applications')
    application_type = models.CharField(max_length=8, choices=ApplicationType.choices, default=ApplicationType.NEW)
    previous_card = models.ForeignKey(
        'HealthCard', null=True, blank=True, on_delete=models.SET_NULL, related_name='renewals'
    )
    status = models.CharField(
        max_length=32, choices=ApplicationStatus.choices, default=ApplicationStatus.DRAFT, db_index=True
    )
    # snapshot of job_category.requires_orientation taken when the draft is created
    orientation_required = models.BooleanField(default=False)
    orientation_completed = models.BooleanField(default=False)
    # bumped when a rejected application is re-opened; lineages belong to one round
    review_round = models.PositiveSmallIntegerField(default=1)
    admin_remarks = models.TextField(blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['applicant'],
                condition=~Q(status__in=TERMINAL_STATUSES),
                name='one_open_application_per_applicant',
            ),
            models.CheckConstraint(
                condition=Q(orientation_completed=False) | Q(orientation_required=True),
                name='orientation_completed_requires_orientation',
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'updated_at'], name='application_status_updated_idx'),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __str__(self) -> str:
        return f"Application #{self.pk} ({self.status})"


class ApplicationTransition(models.Model):
    """Records a status transition for an application."""
    application = models.ForeignKey(Application, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=32, choices=ApplicationStatus.choices)
    to_status = models.CharField(max_length=32, choices=ApplicationStatus.choices)
    actor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='application_transitions'
    )
    timestamp = models.DateTimeField(default=timezone.now)
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['timestamp', 'id']

    def __str__(self) -> str:
        return f"{self.application_id}: {self.from_status} → {self.to_status}"


# ---------------------------------------------------------------------------
# Reviewable artifacts
# ---------------------------------------------------------------------------

class ArtifactLineage(models.Model):
    """The ordered sequence of submission attempts for one reviewable thing.

    A document lineage is keyed by document type within an application;
    the payment lineage is the single payment of an application.  The
    lineage row is the lock target that serializes submissions.
    """
    application = models.ForeignKey(Application, related_name='lineages', on_delete=models.CASCADE)
    kind = models.CharField(max_length=16, choices=ArtifactKind.choices)
    document_type = models.ForeignKey(
        DocumentType, null=True, blank=True, on_delete=models.PROTECT, related_name='lineages'
    )
    key = models.CharField(max_length=96)
    round = models.PositiveSmallIntegerField(default=1)
    max_attempts = models.PositiveSmallIntegerField()
    locked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['application', 'key', 'round'], name='unique_lineage_per_application_round'
            ),
        ]

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def __str__(self) -> str:
        return f"{self.key} of application {self.application_id}"


class Artifact(models.Model):
    """A single submitted document or payment awaiting review."""
    lineage = models.ForeignKey(ArtifactLineage, related_name='artifacts', on_delete=models.CASCADE)
    application = models.ForeignKey(Application, related_name='artifacts', on_delete=models.CASCADE)
    kind = models.CharField(max_length=16, choices=ArtifactKind.choices)
    # storage id for documents, transaction reference for payments
    payload_ref = models.CharField(max_length=255)
    payload = models.JSONField(default=dict, blank=True)
    review_status = models.CharField(
        max_length=16, choices=ReviewStatus.choices, default=ReviewStatus.PENDING, db_index=True
    )
    reviewed_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='reviewed_artifacts'
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    remarks = models.TextField(blank=True)
    attempt_number = models.PositiveSmallIntegerField()
    superseded_by = models.OneToOneField(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='supersedes'
    )
    submitted_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='submitted_artifacts'
    )
    submitted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['lineage', 'attempt_number'], name='unique_attempt_per_lineage'),
            models.UniqueConstraint(
                fields=['lineage'],
                condition=Q(review_status__in=[ReviewStatus.PENDING, ReviewStatus.APPROVED]),
                name='one_open_artifact_per_lineage',
            ),
        ]
        ordering = ['lineage_id', 'attempt_number']

    def __str__(self) -> str:
        return f"{self.kind} attempt {self.attempt_number} ({self.review_status})"


class RejectionRecord(models.Model):
    """Append-only audit entry written for every rejection.

    Only ``was_replaced``/``replaced_at``/``replacement`` and
    ``notification_sent`` may change after creation, each exactly once.
    """
    lineage = models.ForeignKey(ArtifactLineage, related_name='rejections', on_delete=models.CASCADE)
    artifact = models.OneToOneField(Artifact, related_name='rejection', on_delete=models.CASCADE)
    rejected_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='rejections_made'
    )
    rejected_at = models.DateTimeField(default=timezone.now)
    category = models.CharField(max_length=32)
    issue_type = models.CharField(max_length=24, choices=IssueType.choices, default=IssueType.DOCUMENT_ISSUE)
    doctor_name = models.CharField(max_length=255, blank=True)
    clinic_address = models.CharField(max_length=255, blank=True)
    reason = models.TextField()
    specific_issues = models.JSONField(default=list, blank=True)
    attempt_number = models.PositiveSmallIntegerField()
    was_replaced = models.BooleanField(default=False)
    replaced_at = models.DateTimeField(null=True, blank=True)
    replacement = models.OneToOneField(
        Artifact, null=True, blank=True, on_delete=models.SET_NULL, related_name='replaces_rejection'
    )
    notification_sent = models.BooleanField(default=False)

    class Meta:
        ordering = ['lineage_id', 'attempt_number']
        indexes = [
            models.Index(fields=['lineage', 'attempt_number'], name='rejection_lineage_attempt_idx'),
        ]

    def mark_replaced(self, replacement: Artifact, when: datetime.datetime) -> None:
        if self.was_replaced:
            raise ValueError(f'rejection {self.pk} was already replaced')
        self.was_replaced = True
        self.replaced_at = when
        self.replacement = replacement
        self.save(update_fields=['was_replaced', 'replaced_at', 'replacement'])

    def mark_notified(self) -> None:
        if self.notification_sent:
            return
        self.notification_sent = True
        self.save(update_fields=['notification_sent'])

    def __str__(self) -> str:
        return f"Rejection of {self.lineage} (attempt {self.attempt_number})"


# ---------------------------------------------------------------------------
# Orientation
# ---------------------------------------------------------------------------

class OrientationSchedule(models.Model):
    """A bookable orientation session with a fixed number of slots."""
    date = models.DateField()
    time = models.TimeField()
    end_time = models.TimeField(null=True, blank=True)
    venue_name = models.CharField(max_length=255)
    venue_address = models.CharField(max_length=255, blank=True)
    venue_capacity = models.PositiveIntegerField(default=0)
    instructor = models.CharField(max_length=255, blank=True)
    total_slots = models.PositiveIntegerField()
    available_slots = models.PositiveIntegerField()
    is_available = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(available_slots__gte=0) & Q(available_slots__lte=F('total_slots')),
                name='available_slots_within_total',
            ),
        ]
        indexes = [
            models.Index(fields=['date', 'time'], name='schedule_date_time_idx'),
        ]

    @property
    def starts_at(self) -> datetime.datetime:
        return timezone.make_aware(datetime.datetime.combine(self.date, self.time))

    @property
    def venue(self) -> dict:
        return {'name': self.venue_name, 'address': self.venue_address, 'capacity': self.venue_capacity}

    def __str__(self) -> str:
        return f"{self.venue_name} {self.date:%Y-%m-%d} {self.time:%H:%M}"


class OrientationBooking(models.Model):
    """One applicant's reservation against an orientation schedule."""
    application = models.ForeignKey(Application, related_name='orientation_bookings', on_delete=models.CASCADE)
    user = models.ForeignKey(User, related_name='orientation_bookings', on_delete=models.CASCADE)
    schedule = models.ForeignKey(OrientationSchedule, related_name='bookings', on_delete=models.PROTECT)
    status = models.CharField(
        max_length=16, choices=BookingStatus.choices, default=BookingStatus.SCHEDULED, db_index=True
    )
    qr_code = models.CharField(max_length=128, blank=True)
    booked_at = models.DateTimeField(default=timezone.now)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    checked_in_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='orientation_check_ins'
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    missed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['application'],
                condition=Q(status__in=ACTIVE_BOOKING_STATUSES),
                name='one_active_booking_per_application',
            ),
        ]
        indexes = [
            models.Index(fields=['schedule', 'status'], name='booking_schedule_status_idx'),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} ({self.status}) for application {self.application_id}"


# ---------------------------------------------------------------------------
# Health card
# ---------------------------------------------------------------------------

class HealthCard(models.Model):
    """The credential issued once an application is approved."""
    application = models.ForeignKey(Application, related_name='health_cards', on_delete=models.PROTECT)
    registration_number = models.CharField(max_length=32, unique=True)
    issued_date = models.DateField()
    expiry_date = models.DateField()
    status = models.CharField(max_length=16, choices=CardStatus.choices, default=CardStatus.ACTIVE, db_index=True)
    issued_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='health_cards_issued'
    )
    revoked_at = models.DateTimeField(null=True, blank=True)
    revoked_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['application'],
                condition=Q(status=CardStatus.ACTIVE),
                name='one_active_card_per_application',
            ),
        ]

    def __str__(self) -> str:
        return f"HealthCard {self.registration_number} ({self.status})"


# ---------------------------------------------------------------------------
# Notifications & audit
# ---------------------------------------------------------------------------

class Notification(models.Model):
    """Outbox row for a notification intent handed to the delivery layer."""
    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    application = models.ForeignKey(
        Application, null=True, blank=True, on_delete=models.SET_NULL, related_name='notifications'
    )
    kind = models.CharField(max_length=64)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['recipient', 'created_at'], name='notification_recipient_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.kind} -> {self.recipient_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.BigIntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]
