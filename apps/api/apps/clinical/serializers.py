"""
Clinical serializers for mirrored sessions and workflow transitions.
"""
from rest_framework import serializers

from apps.clinical.models import ClinicalSession, StateTransition, WorkflowState
from apps.clinical import workflow


class StateTransitionSerializer(serializers.ModelSerializer):
    """Read-only serializer for workflow audit records"""
    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = StateTransition
        fields = [
            'id',
            'session_couch_id',
            'from_state',
            'to_state',
            'user_id',
            'user_email',
            'reason',
            'metadata',
            'couch_id',
            'created_at',
        ]
        read_only_fields = fields


class ClinicalSessionListSerializer(serializers.ModelSerializer):
    """Serializer for ClinicalSession list view (limited fields)"""

    class Meta:
        model = ClinicalSession
        fields = [
            'id',
            'couch_id',
            'patient_cpt',
            'stage',
            'status',
            'triage_priority',
            'workflow_state',
            'workflow_state_updated_at',
            'couch_updated_at',
            'synced_at',
        ]
        read_only_fields = fields


class ClinicalSessionDetailSerializer(serializers.ModelSerializer):
    """Serializer for ClinicalSession detail view"""
    allowed_transitions = serializers.SerializerMethodField()
    is_terminal = serializers.SerializerMethodField()

    class Meta:
        model = ClinicalSession
        fields = [
            'id',
            'couch_id',
            'couch_rev',
            'session_uuid',
            'patient_cpt',
            'stage',
            'status',
            'triage_priority',
            'chief_complaint',
            'form_instance_ids',
            'provider_role',
            'created_by_id',
            'session_created_at',
            'session_updated_at',
            'completed_at',
            'workflow_state',
            'workflow_state_updated_at',
            'allowed_transitions',
            'is_terminal',
            'couch_updated_at',
            'synced_at',
            'is_deleted',
        ]
        read_only_fields = fields

    def get_allowed_transitions(self, obj):
        return workflow.allowed_transitions_for(obj.workflow_state)

    def get_is_terminal(self, obj):
        return workflow.is_terminal(obj.workflow_state)


class TransitionRequestSerializer(serializers.Serializer):
    """Request body for POST /sessions/{couch_id}/transition/"""
    to_state = serializers.ChoiceField(choices=WorkflowState.choices)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    metadata = serializers.JSONField(required=False, default=dict)

    def validate_metadata(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError('metadata must be a JSON object')
        return value
