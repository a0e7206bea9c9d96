"""
Document and payment submission and review endpoints.
"""
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.throttling import ScopedRateThrottle

from cardflow.permissions import IsApplicantRole, IsReviewerRole
from cardflow.responses import ok
from cardflow.serializers.review import (
    DocumentSubmitSerializer, LineageQuerySerializer, PaymentSubmitSerializer, ReviewSerializer,
    artifact_data, outcome_data, rejection_data,
)
from cardflow.services import applications
from cardflow.services.access import ReviewContext


class SubmissionThrottle(ScopedRateThrottle):
    scope = 'submission'

    def get_cache_key(self, request, view):
        ident = request.user.pk if request.user and request.user.is_authenticated else self.get_ident(request)
        return self.cache_format % {'scope': self.scope, 'ident': ident}


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApplicantRole])
@throttle_classes([SubmissionThrottle])
def submit_document(request):
    s = DocumentSubmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payload = {k: vd[k] for k in ('fileName', 'mimeType', 'size') if k in vd}
    result = applications.submit_document(vd['applicationId'], vd['documentType'], vd['payloadRef'],
                                          request.user, payload=payload)
    return ok(artifact_data(result.value), result.notifications, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApplicantRole])
@throttle_classes([SubmissionThrottle])
def submit_payment(request):
    s = PaymentSubmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    payload = {
        'method': vd['method'],
        'amount': str(vd['amount']),
        'serviceFee': str(vd['serviceFee']),
        'netAmount': str(vd['netAmount']),
    }
    result = applications.submit_payment(vd['applicationId'], vd['referenceNumber'], payload, request.user)
    return ok(artifact_data(result.value), result.notifications, status=status.HTTP_201_CREATED)


def _review(request, operation):
    s = ReviewSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    result = operation(
        vd['artifactId'], vd['decision'], ReviewContext.for_user(request.user),
        remarks=vd.get('remarks', ''),
        category=vd.get('category') or None,
        reason=vd.get('reason') or None,
        specific_issues=vd.get('specificIssues'),
        issue_type=vd.get('issueType'),
        doctor_name=vd.get('doctorName'),
        clinic_address=vd.get('clinicAddress'),
    )
    return ok(outcome_data(result.value), result.notifications)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def review_document(request):
    return _review(request, applications.review_document)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def review_payment(request):
    return _review(request, applications.review_payment)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def rejection_history(request):
    q = LineageQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    records = applications.get_rejection_history(q.validated_data['lineageId'], request.user)
    return ok([rejection_data(r) for r in records])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def rejection_stats(request, pk: int):
    return ok(applications.get_rejection_summary(pk, request.user))
