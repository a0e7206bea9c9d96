import bleach
from rest_framework import serializers

from cardflow.models import ApplicationStatus, ApplicationType
from cardflow.services.state_machine import ADMIN_EDGES, EXTERNAL_EVENTS


class CreateDraftSerializer(serializers.Serializer):
    jobCategoryId = serializers.IntegerField(min_value=1)
    applicationType = serializers.ChoiceField(choices=ApplicationType.choices, required=False,
                                              default=ApplicationType.NEW)
    previousCardId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate(self, attrs):
        if attrs.get('applicationType') == ApplicationType.RENEW and not attrs.get('previousCardId'):
            raise serializers.ValidationError({'previousCardId': 'A renewal must reference the previous card.'})
        return attrs


class ApplicationIdSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)


class AdvanceSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)
    event = serializers.ChoiceField(choices=sorted(EXTERNAL_EVENTS))
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate_reason(self, v):
        return bleach.clean((v or '').strip(), tags=set(), strip=True)


class ResolveEscalationSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)
    toStatus = serializers.ChoiceField(choices=sorted(ADMIN_EDGES[ApplicationStatus.ADMINISTRATIVE_REVIEW]))
    remarks = serializers.CharField(max_length=2000, required=False, allow_blank=True)


class ReopenSerializer(serializers.Serializer):
    applicationId = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


def transition_data(t) -> dict:
    return {
        'from': t.from_status,
        'to': t.to_status,
        'actor': t.actor.username if t.actor_id else '',
        'timestamp': t.timestamp.isoformat(),
        'reason': t.reason,
    }


def application_data(application, *, history: bool = False) -> dict:
    data = {
        'id': application.id,
        'applicantId': application.applicant_id,
        'jobCategoryId': application.job_category_id,
        'applicationType': application.application_type,
        'previousCardId': application.previous_card_id,
        'status': application.status,
        'orientationRequired': application.orientation_required,
        'orientationCompleted': application.orientation_completed,
        'reviewRound': application.review_round,
        'adminRemarks': application.admin_remarks,
        'submittedAt': application.submitted_at.isoformat() if application.submitted_at else None,
        'createdAt': application.created_at.isoformat(),
        'updatedAt': application.updated_at.isoformat(),
    }
    if history:
        data['transitions'] = [transition_data(t) for t in application.transitions.all()]
        data['lineages'] = [
            {'id': l.id, 'key': l.key, 'kind': l.kind, 'round': l.round, 'maxAttempts': l.max_attempts,
             'locked': l.is_locked}
            for l in application.lineages.order_by('round', 'key')
        ]
    return data
