from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated

from cardflow.permissions import IsReviewerRole
from cardflow.responses import ok
from cardflow.serializers.health_card import IssueSerializer, RevokeSerializer, VerifyQuerySerializer, card_data
from cardflow.services import health_cards


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def issue_health_card(request):
    s = IssueSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = health_cards.issue(s.validated_data['applicationId'], request.user)
    return ok(card_data(result.value), result.notifications)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewerRole])
def revoke_health_card(request):
    s = RevokeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = health_cards.revoke(s.validated_data['cardId'], s.validated_data['reason'], request.user)
    return ok(card_data(result.value), result.notifications)


@api_view(['GET'])
@permission_classes([AllowAny])
def verify_health_card(request):
    """Public lookup used by the QR code printed on the card."""
    q = VerifyQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return ok(health_cards.verify(q.validated_data['registrationNumber']))
