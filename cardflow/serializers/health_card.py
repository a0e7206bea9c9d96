from rest_framework import serializers


class IssueSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)


class RevokeSerializer(serializers.Serializer):
    cardId = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255)


class VerifyQuerySerializer(serializers.Serializer):
    registrationNumber = serializers.CharField(max_length=32)


def card_data(card) -> dict:
    return {
        'id': card.id,
        'applicationId': card.application_id,
        'registrationNumber': card.registration_number,
        'issuedDate': card.issued_date.isoformat(),
        'expiryDate': card.expiry_date.isoformat(),
        'status': card.status,
        'revokedAt': card.revoked_at.isoformat() if card.revoked_at else None,
        'revokedReason': card.revoked_reason,
    }
