from django.contrib import admin
from .models import (
    Patient, ClinicalSession, ClinicalForm, AiRequest, Referral, RadiologyStudy, StateTransition
)

MIRROR_READONLY = [
    'couch_id', 'couch_rev', 'couch_updated_at', 'synced_at', 'raw_document',
    'is_deleted', 'deleted_at', 'created_at', 'updated_at',
]


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['cpt', 'short_code', 'gender', 'age_months', 'is_active', 'is_encrypted', 'couch_updated_at']
    list_filter = ['is_active', 'is_encrypted', 'gender', 'is_deleted']
    search_fields = ['cpt', 'short_code', 'external_id', 'couch_id']
    readonly_fields = MIRROR_READONLY
    raw_id_fields = ['created_by']


@admin.register(ClinicalSession)
class ClinicalSessionAdmin(admin.ModelAdmin):
    list_display = ['couch_id', 'patient_cpt', 'stage', 'triage_priority', 'workflow_state', 'couch_updated_at']
    list_filter = ['workflow_state', 'stage', 'triage_priority', 'is_deleted']
    search_fields = ['couch_id', 'session_uuid', 'patient_cpt']
    # Workflow state only moves through the state machine
    readonly_fields = MIRROR_READONLY + ['workflow_state', 'workflow_state_updated_at']
    raw_id_fields = ['created_by']


@admin.register(ClinicalForm)
class ClinicalFormAdmin(admin.ModelAdmin):
    list_display = ['couch_id', 'schema_id', 'patient_cpt', 'status', 'couch_updated_at']
    list_filter = ['schema_id', 'status', 'is_deleted']
    search_fields = ['couch_id', 'form_uuid', 'session_couch_id', 'patient_cpt']
    readonly_fields = MIRROR_READONLY
    raw_id_fields = ['created_by']


@admin.register(AiRequest)
class AiRequestAdmin(admin.ModelAdmin):
    list_display = ['couch_id', 'task', 'use_case', 'model', 'latency_ms', 'was_overridden', 'requested_at']
    list_filter = ['task', 'use_case', 'was_overridden']
    search_fields = ['couch_id', 'request_uuid', 'session_couch_id', 'patient_cpt']
    readonly_fields = MIRROR_READONLY
    raw_id_fields = ['user']
    date_hierarchy = 'requested_at'


@admin.register(Referral)
class ReferralAdmin(admin.ModelAdmin):
    list_display = ['couch_id', 'session_couch_id', 'status', 'priority', 'specialty', 'assigned_to_role']
    list_filter = ['status', 'priority', 'specialty']
    search_fields = ['couch_id', 'referral_uuid', 'session_couch_id']
    readonly_fields = MIRROR_READONLY
    raw_id_fields = ['referring_user', 'assigned_to_user']


@admin.register(RadiologyStudy)
class RadiologyStudyAdmin(admin.ModelAdmin):
    list_display = ['couch_id', 'patient_cpt', 'modality', 'body_part', 'priority', 'status', 'ai_critical_flag']
    list_filter = ['modality', 'priority', 'status', 'ai_critical_flag']
    search_fields = ['couch_id', 'study_uuid', 'patient_cpt']
    readonly_fields = MIRROR_READONLY
    raw_id_fields = ['referring_user', 'assigned_radiologist']


@admin.register(StateTransition)
class StateTransitionAdmin(admin.ModelAdmin):
    """Audit records are append-only."""
    list_display = ['session_couch_id', 'from_state', 'to_state', 'user', 'reason', 'created_at']
    list_filter = ['from_state', 'to_state']
    search_fields = ['session_couch_id', 'couch_id', 'reason']
    readonly_fields = [f.name for f in StateTransition._meta.fields]
    date_hierarchy = 'created_at'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
