"""
Application lifecycle endpoints.

Applicants create and submit drafts; reviewers start document review,
approve or reject applications under review; administrators resolve
escalated applications and re-open rejected ones.  All state changes
are delegated to :mod:`cardflow.services.applications`.
"""
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated

from cardflow.models import Application, ApplicationStatus
from cardflow.permissions import IsApplicantRole, IsReviewerRole
from cardflow.responses import ok
from cardflow.serializers.application import (
    AdvanceSerializer, ApplicationIdSerializer, CreateDraftSerializer, ReopenSerializer,
    ResolveEscalationSerializer, application_data,
)
from cardflow.services import applications, audit
from cardflow.services.access import ReviewContext


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApplicantRole])
def create_draft(request):
    s = CreateDraftSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    result = applications.create_draft(
        request.user, vd['jobCategoryId'], vd['applicationType'], vd.get('previousCardId'),
    )
    return ok(application_data(result.value), result.notifications, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApplicantRole])
def submit_application(request):
    s = ApplicationIdSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = applications.submit(s.validated_data['applicationId'], request.user)
    return ok(application_data(result.value), result.notifications)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def advance_application(request):
    s = AdvanceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    result = applications.advance(vd['applicationId'], vd['event'], request.user, vd.get('reason', ''))
    return ok(application_data(result.value), result.notifications)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def application_status(request, pk: int):
    """Current status with the full transition history."""
    application = applications.get_status(pk, request.user)
    return ok(application_data(application, history=True))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def application_audit(request, pk: int):
    """Audit events of the application and of its documents, payments, bookings and cards."""
    application = applications.get_status(pk, request.user)
    return ok([
        {
            'action': e.action,
            'actor': e.user.username if e.user_id else '',
            'detail': e.detail,
            'createdAt': e.created_at.isoformat(),
        }
        for e in audit.application_trail(application.pk)
    ])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_applications(request):
    items = Application.objects.filter(applicant=request.user).order_by('-created_at')[:50]
    return ok([application_data(a) for a in items])


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def review_queue(request):
    """Applications awaiting a reviewer, narrowed to the caller's categories."""
    ctx = ReviewContext.for_user(request.user)
    qs = Application.objects.filter(status__in=[
        ApplicationStatus.SUBMITTED,
        ApplicationStatus.DOCUMENT_VERIFICATION,
        ApplicationStatus.PAYMENT_VALIDATION,
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.ADMINISTRATIVE_REVIEW,
    ])
    wanted = request.query_params.get('status')
    if wanted:
        qs = qs.filter(status=wanted)
    items = [a for a in qs.order_by('updated_at')[:200] if ctx.covers(a.job_category_id)]
    return ok([application_data(a) for a in items])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def resolve_escalation(request):
    s = ResolveEscalationSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    result = applications.resolve_escalation(vd['applicationId'], vd['toStatus'], request.user,
                                             vd.get('remarks', ''))
    return ok(application_data(result.value), result.notifications)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def reopen_application(request):
    s = ReopenSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = applications.reopen(s.validated_data['applicationId'], request.user,
                                 s.validated_data.get('reason', ''))
    return ok(application_data(result.value), result.notifications)
