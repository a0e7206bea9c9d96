from rest_framework import serializers

from cardflow.models import IssueType, PaymentMethod
from cardflow.services.review_protocol import Decision


class DocumentSubmitSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)
    documentType = serializers.SlugField(max_length=64)
    payloadRef = serializers.CharField(max_length=255)
    fileName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    mimeType = serializers.CharField(max_length=128, required=False, allow_blank=True)
    size = serializers.IntegerField(min_value=0, required=False)


class PaymentSubmitSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)
    referenceNumber = serializers.CharField(max_length=255)
    method = serializers.ChoiceField(choices=PaymentMethod.choices)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    serviceFee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, default=0)
    netAmount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)


class ReviewSerializer(serializers.Serializer):
    artifactId = serializers.IntegerField(min_value=1)
    decision = serializers.ChoiceField(choices=Decision.CHOICES)
    remarks = serializers.CharField(max_length=2000, required=False, allow_blank=True)
    category = serializers.CharField(max_length=32, required=False, allow_blank=True)
    reason = serializers.CharField(max_length=2000, required=False, allow_blank=True)
    specificIssues = serializers.ListField(child=serializers.CharField(max_length=255), required=False)
    issueType = serializers.ChoiceField(choices=IssueType.choices, required=False)
    doctorName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    clinicAddress = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs['decision'] == Decision.REJECT:
            if not attrs.get('category'):
                raise serializers.ValidationError({'category': 'A rejection category is required.'})
            if not (attrs.get('reason') or '').strip():
                raise serializers.ValidationError({'reason': 'A rejection reason is required.'})
            if attrs.get('issueType') == IssueType.MEDICAL_REFERRAL and not (attrs.get('doctorName') or '').strip():
                raise serializers.ValidationError({'doctorName': 'A doctor is required for a medical referral.'})
        return attrs


class LineageQuerySerializer(serializers.Serializer):
    lineageId = serializers.IntegerField(min_value=1)


def artifact_data(artifact) -> dict:
    return {
        'id': artifact.id,
        'applicationId': artifact.application_id,
        'lineageId': artifact.lineage_id,
        'kind': artifact.kind,
        'payloadRef': artifact.payload_ref,
        'payload': artifact.payload,
        'reviewStatus': artifact.review_status,
        'reviewedBy': artifact.reviewed_by_id,
        'reviewedAt': artifact.reviewed_at.isoformat() if artifact.reviewed_at else None,
        'remarks': artifact.remarks,
        'attemptNumber': artifact.attempt_number,
        'supersededBy': artifact.superseded_by_id,
    }


def rejection_data(record) -> dict:
    return {
        'id': record.id,
        'lineageId': record.lineage_id,
        'artifactId': record.artifact_id,
        'rejectedBy': record.rejected_by_id,
        'rejectedAt': record.rejected_at.isoformat(),
        'issueType': record.issue_type,
        'category': record.category,
        'reason': record.reason,
        'specificIssues': record.specific_issues,
        'doctorName': record.doctor_name,
        'clinicAddress': record.clinic_address,
        'attemptNumber': record.attempt_number,
        'wasReplaced': record.was_replaced,
        'replacedAt': record.replaced_at.isoformat() if record.replaced_at else None,
        'notificationSent': record.notification_sent,
    }


def outcome_data(outcome) -> dict:
    data = outcome.as_dict()
    data['artifact'] = artifact_data(outcome.artifact)
    return data
