"""
Clinical models: mirrored CouchDB documents and the session workflow audit trail.

Every mirrored table keeps the CouchDB identity of the source document
(`couch_id`, `couch_rev`), the business time the document was last
updated on the device (`couch_updated_at`) and the verbatim source
document (`raw_document`). Rows are never physically deleted; a deletion
in CouchDB sets `is_deleted`.
"""
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models


# ============================================================================
# Enums
# ============================================================================

class WorkflowState(models.TextChoices):
    """Clinical session lifecycle states."""
    NEW = 'NEW', 'New'
    TRIAGED = 'TRIAGED', 'Triaged'
    REFERRED = 'REFERRED', 'Referred'
    IN_GP_REVIEW = 'IN_GP_REVIEW', 'In GP Review'
    UNDER_TREATMENT = 'UNDER_TREATMENT', 'Under Treatment'
    CLOSED = 'CLOSED', 'Closed'
    CANCELLED = 'CANCELLED', 'Cancelled'


# ============================================================================
# Base
# ============================================================================

class MirroredDocument(models.Model):
    """
    Columns shared by every table mirrored from a CouchDB document type.

    - couch_id: CouchDB `_id` (unique, immutable once set)
    - couch_rev: last applied `_rev`
    - couch_updated_at: document business time (`updatedAt`), never regresses
    - synced_at: when the row was last written by the sync engine
    - raw_document: verbatim source document
    - is_deleted/deleted_at: tombstone for documents deleted at the source
    """
    couch_id = models.CharField(max_length=255, unique=True)
    couch_rev = models.CharField(max_length=100, blank=True, null=True)
    couch_updated_at = models.DateTimeField(blank=True, null=True)
    synced_at = models.DateTimeField(blank=True, null=True)
    raw_document = models.JSONField(default=dict, blank=True)
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Document `type` discriminator this table mirrors
    DOC_TYPE = None

    class Meta:
        abstract = True

    def __str__(self):
        return f"{self.__class__.__name__} {self.couch_id}"

    def mark_deleted(self, when):
        self.is_deleted = True
        self.deleted_at = when


# ============================================================================
# Mirrored documents
# ============================================================================

class Patient(MirroredDocument):
    """
    Patient registered on a mobile device (`clinicalPatient`).

    Encrypted patients only carry `cpt`, `is_active` and the raw document;
    the payload is ciphertext so every clinical column stays null.
    """
    cpt = models.CharField(max_length=50, unique=True, help_text='Clinical patient tag (short identifier)')
    short_code = models.CharField(max_length=20, blank=True, null=True)
    external_id = models.CharField(max_length=100, blank=True, null=True)
    date_of_birth = models.DateField(blank=True, null=True)
    age_months = models.PositiveIntegerField(blank=True, null=True)
    gender = models.CharField(max_length=20, blank=True, null=True)
    weight_kg = models.DecimalField(max_digits=6, decimal_places=2, blank=True, null=True)
    phone = models.CharField(max_length=50, blank=True, null=True)
    visit_count = models.PositiveIntegerField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    is_encrypted = models.BooleanField(default=False)
    last_visit_at = models.DateTimeField(blank=True, null=True)
    source = models.CharField(max_length=50, blank=True, null=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='created_patients'
    )

    DOC_TYPE = 'clinicalPatient'

    # Columns never populated for encrypted documents
    CLINICAL_FIELDS = [
        'short_code', 'external_id', 'date_of_birth', 'age_months', 'gender',
        'weight_kg', 'phone', 'visit_count', 'last_visit_at', 'source',
    ]

    class Meta:
        db_table = 'patients'
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['is_active'], name='idx_patient_active'),
            models.Index(fields=['last_visit_at'], name='idx_patient_last_visit'),
        ]

    def __str__(self):
        return f"Patient {self.cpt}"


class ClinicalSession(MirroredDocument):
    """
    Clinical session (`clinicalSession`) and its workflow state.

    `workflow_state` is seeded from the document when the row is first
    created; after that only the workflow state machine changes it.
    """
    session_uuid = models.CharField(max_length=255, blank=True, null=True)
    patient_cpt = models.CharField(max_length=50, blank=True, null=True)
    stage = models.CharField(max_length=50, default='registration')
    status = models.CharField(max_length=50, default='open')
    triage_priority = models.CharField(max_length=20, default='unknown')
    chief_complaint = models.TextField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    form_instance_ids = models.JSONField(default=list, blank=True)
    session_created_at = models.DateTimeField(blank=True, null=True)
    session_updated_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)

    workflow_state = models.CharField(
        max_length=20,
        choices=WorkflowState.choices,
        default=WorkflowState.NEW
    )
    workflow_state_updated_at = models.DateTimeField(blank=True, null=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='created_sessions'
    )
    provider_role = models.CharField(max_length=50, blank=True, null=True)

    DOC_TYPE = 'clinicalSession'

    class Meta:
        db_table = 'clinical_sessions'
        verbose_name = 'Clinical Session'
        verbose_name_plural = 'Clinical Sessions'
        indexes = [
            models.Index(fields=['patient_cpt'], name='idx_session_patient'),
            models.Index(fields=['workflow_state'], name='idx_session_wf_state'),
            models.Index(fields=['triage_priority'], name='idx_session_triage'),
        ]


class ClinicalForm(MirroredDocument):
    """Clinical form instance filled in during a session (`clinicalForm`)."""
    form_uuid = models.CharField(max_length=255, blank=True, null=True)
    session_couch_id = models.CharField(max_length=255, blank=True, null=True)
    patient_cpt = models.CharField(max_length=50, blank=True, null=True)
    schema_id = models.CharField(max_length=100, default='unknown')
    schema_version = models.CharField(max_length=20, blank=True, null=True)
    current_state_id = models.CharField(max_length=100, blank=True, null=True)
    status = models.CharField(max_length=50, default='draft')
    sync_status = models.CharField(max_length=20, default='synced')
    answers = models.JSONField(default=dict, blank=True)
    calculated = models.JSONField(blank=True, null=True)
    audit_log = models.JSONField(blank=True, null=True)
    form_created_at = models.DateTimeField(blank=True, null=True)
    form_updated_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='created_forms'
    )
    creator_role = models.CharField(max_length=50, blank=True, null=True)

    DOC_TYPE = 'clinicalForm'

    class Meta:
        db_table = 'clinical_forms'
        verbose_name = 'Clinical Form'
        verbose_name_plural = 'Clinical Forms'
        indexes = [
            models.Index(fields=['session_couch_id'], name='idx_form_session'),
            models.Index(fields=['schema_id'], name='idx_form_schema'),
        ]


class AiRequest(MirroredDocument):
    """AI request log entry recorded on the device (`aiLog`)."""
    request_uuid = models.CharField(max_length=255, blank=True, null=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='ai_requests'
    )
    role = models.CharField(max_length=50, blank=True, null=True)
    session_couch_id = models.CharField(max_length=255, blank=True, null=True)
    form_couch_id = models.CharField(max_length=255, blank=True, null=True)
    patient_cpt = models.CharField(max_length=50, blank=True, null=True)
    task = models.CharField(max_length=100, blank=True, null=True)
    use_case = models.CharField(max_length=100, blank=True, null=True)
    prompt_version = models.CharField(max_length=50, blank=True, null=True)
    input_hash = models.CharField(max_length=128, blank=True, null=True)
    prompt = models.TextField(blank=True, null=True)
    response = models.TextField(blank=True, null=True)
    safe_output = models.TextField(blank=True, null=True)
    model = models.CharField(max_length=100, blank=True, null=True)
    model_version = models.CharField(max_length=50, blank=True, null=True)
    latency_ms = models.PositiveIntegerField(blank=True, null=True)
    was_overridden = models.BooleanField(default=False)
    risk_flags = models.JSONField(blank=True, null=True)
    requested_at = models.DateTimeField(blank=True, null=True)

    DOC_TYPE = 'aiLog'

    class Meta:
        db_table = 'ai_requests'
        verbose_name = 'AI Request'
        verbose_name_plural = 'AI Requests'
        indexes = [
            models.Index(fields=['session_couch_id'], name='idx_ai_request_session'),
            models.Index(fields=['task'], name='idx_ai_request_task'),
            models.Index(fields=['requested_at'], name='idx_ai_request_requested'),
        ]


class Referral(MirroredDocument):
    """Referral of a session to another provider (`referral`)."""
    referral_uuid = models.CharField(max_length=255, blank=True, null=True)
    session_couch_id = models.CharField(max_length=255, blank=True, null=True)
    referring_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='referrals_made'
    )
    assigned_to_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='referrals_assigned'
    )
    assigned_to_role = models.CharField(max_length=50, blank=True, null=True)
    status = models.CharField(max_length=20, default='pending')
    priority = models.CharField(max_length=20, default='yellow')
    specialty = models.CharField(max_length=100, blank=True, null=True)
    reason = models.TextField(blank=True, null=True)
    clinical_notes = models.TextField(blank=True, null=True)
    rejection_reason = models.TextField(blank=True, null=True)
    assigned_at = models.DateTimeField(blank=True, null=True)
    accepted_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)

    DOC_TYPE = 'referral'

    class Meta:
        db_table = 'referrals'
        verbose_name = 'Referral'
        verbose_name_plural = 'Referrals'
        indexes = [
            models.Index(fields=['session_couch_id'], name='idx_referral_session'),
            models.Index(fields=['status'], name='idx_referral_status'),
        ]


class RadiologyStudy(MirroredDocument):
    """Imaging study ordered for a patient (`radiologyStudy`)."""
    study_uuid = models.CharField(max_length=255, blank=True, null=True)
    patient_cpt = models.CharField(max_length=50, blank=True, null=True)
    session_couch_id = models.CharField(max_length=255, blank=True, null=True)
    referring_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='radiology_studies_referred'
    )
    assigned_radiologist = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='radiology_studies_assigned'
    )
    modality = models.CharField(max_length=20, blank=True, null=True)
    body_part = models.CharField(max_length=100, blank=True, null=True)
    study_type = models.CharField(max_length=100, blank=True, null=True)
    clinical_indication = models.TextField(blank=True, null=True)
    clinical_question = models.TextField(blank=True, null=True)
    priority = models.CharField(max_length=20, default='routine')
    status = models.CharField(max_length=20, default='pending')
    ai_priority_score = models.PositiveIntegerField(blank=True, null=True)
    ai_critical_flag = models.BooleanField(default=False)
    ai_preliminary_report = models.TextField(blank=True, null=True)
    dicom_series_count = models.PositiveIntegerField(blank=True, null=True)
    dicom_storage_path = models.CharField(max_length=500, blank=True, null=True)
    ordered_at = models.DateTimeField(blank=True, null=True)
    scheduled_at = models.DateTimeField(blank=True, null=True)
    performed_at = models.DateTimeField(blank=True, null=True)
    images_available_at = models.DateTimeField(blank=True, null=True)
    study_completed_at = models.DateTimeField(blank=True, null=True)

    DOC_TYPE = 'radiologyStudy'

    class Meta:
        db_table = 'radiology_studies'
        verbose_name = 'Radiology Study'
        verbose_name_plural = 'Radiology Studies'
        indexes = [
            models.Index(fields=['patient_cpt'], name='idx_radiology_patient'),
            models.Index(fields=['status'], name='idx_radiology_status'),
            models.Index(fields=['modality'], name='idx_radiology_modality'),
        ]


# Every table mirrored from CouchDB, in lookup order
MIRRORED_MODELS = (Patient, ClinicalSession, ClinicalForm, AiRequest, Referral, RadiologyStudy)


# ============================================================================
# Workflow audit trail
# ============================================================================

class StateTransition(models.Model):
    """
    Append-only record of an accepted workflow transition.

    - session: FK -> clinical_sessions
    - session_couch_id: denormalized for dashboards
    - from_state, to_state
    - user: actor (nullable; unresolved or system transitions)
    - reason, metadata
    - couch_id: originating `stateTransition` document, when the transition
      arrived through the change feed (unique, makes replays no-ops)
    - created_at
    """
    session = models.ForeignKey(
        ClinicalSession,
        on_delete=models.PROTECT,
        related_name='state_transitions'
    )
    session_couch_id = models.CharField(max_length=255)
    from_state = models.CharField(max_length=20, choices=WorkflowState.choices)
    to_state = models.CharField(max_length=20, choices=WorkflowState.choices)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='state_transitions'
    )
    reason = models.CharField(max_length=255, blank=True, null=True)
    metadata = models.JSONField(default=dict, blank=True)
    couch_id = models.CharField(max_length=255, unique=True, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'state_transitions'
        verbose_name = 'State Transition'
        verbose_name_plural = 'State Transitions'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['session_couch_id'], name='idx_transition_session'),
            models.Index(fields=['to_state'], name='idx_transition_to_state'),
            models.Index(fields=['created_at'], name='idx_transition_created'),
        ]

    def __str__(self):
        return f"{self.session_couch_id}: {self.from_state} -> {self.to_state}"

    def save(self, *args, **kwargs):
        """
        BUSINESS RULE: Transition records are immutable once written.
        """
        if not self._state.adding:
            raise ValidationError('State transitions are immutable and cannot be modified')
        super().save(*args, **kwargs)
