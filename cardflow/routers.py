"""
URL mappings for the health-card workflow API.

One endpoint per core operation plus the read endpoints the front-end
needs.  Trailing slashes are omitted, matching ``APPEND_SLASH = False``.
"""
from django.urls import path, include

from .views import health
from .views.auth import login_view
from .views.applications import (
    create_draft,
    submit_application,
    advance_application,
    application_status,
    application_audit,
    my_applications,
    review_queue,
    resolve_escalation,
    reopen_application,
)
from .views.reviews import (
    submit_document,
    submit_payment,
    review_document,
    review_payment,
    rejection_history,
    rejection_stats,
)
from .views.orientation import (
    available_schedules,
    create_schedule,
    schedule_roster,
    book_orientation,
    cancel_orientation,
    check_in,
    complete_orientation,
)
from .views.health_cards import issue_health_card, revoke_health_card, verify_health_card


urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    # Applications
    path('api/applications', my_applications),
    path('api/applications/draft', create_draft, name='application_draft'),
    path('api/applications/submit', submit_application, name='application_submit'),
    path('api/applications/advance', advance_application, name='application_advance'),
    path('api/applications/<int:pk>', application_status, name='application_status'),
    path('api/applications/<int:pk>/rejection-stats', rejection_stats, name='rejection_stats'),
    path('api/applications/<int:pk>/audit', application_audit, name='application_audit'),
    # Documents & payments
    path('api/documents/submit', submit_document, name='document_submit'),
    path('api/documents/review', review_document, name='document_review'),
    path('api/payments/submit', submit_payment, name='payment_submit'),
    path('api/payments/review', review_payment, name='payment_review'),
    path('api/rejections/history', rejection_history, name='rejection_history'),
    # Orientation
    path('api/orientation/schedules', available_schedules, name='orientation_schedules'),
    path('api/orientation/schedules/create', create_schedule, name='orientation_schedule_create'),
    path('api/orientation/schedules/<int:pk>/roster', schedule_roster, name='orientation_roster'),
    path('api/orientation/book', book_orientation, name='orientation_book'),
    path('api/orientation/cancel', cancel_orientation, name='orientation_cancel'),
    path('api/orientation/check-in', check_in, name='orientation_check_in'),
    path('api/orientation/complete', complete_orientation, name='orientation_complete'),
    # Health cards
    path('api/health-cards/issue', issue_health_card, name='health_card_issue'),
    path('api/health-cards/revoke', revoke_health_card, name='health_card_revoke'),
    path('api/health-cards/verify', verify_health_card, name='health_card_verify'),
    # Administration
    path('api/admin/review-queue', review_queue, name='review_queue'),
    path('api/admin/escalations/resolve', resolve_escalation, name='escalation_resolve'),
    path('api/admin/applications/reopen', reopen_application, name='application_reopen'),
]
