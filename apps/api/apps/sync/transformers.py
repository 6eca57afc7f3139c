"""
Document transformers: CouchDB document -> relational record.

Each document `type` has one transformer registered with @register.
Transformers map camelCase document fields onto model columns
explicitly; fields they do not know about survive only in
`raw_document`. Actor references are returned separately so the writer
can resolve them to user ids.

Usage:
    result = transform(doc)
    if isinstance(result, TransitionRequest):
        ...  # handled by the workflow state machine
    else:
        writer.apply(result)
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from django.utils import timezone

from apps.clinical.models import (
    AiRequest,
    ClinicalForm,
    ClinicalSession,
    Patient,
    RadiologyStudy,
    Referral,
    WorkflowState,
)

from .exceptions import InvalidTimestamp, MissingRequiredField, UnknownDocumentType
from .timestamps import age_in_months, parse_date_value, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    """
    A document mapped onto one mirrored table.

    - record: column values written on every apply
    - actor_refs: FK field name -> raw actor reference
    - create_only: column values written only when the row is created
    """
    model: Any
    couch_id: str
    record: Dict[str, Any]
    actor_refs: Dict[str, Any] = field(default_factory=dict)
    create_only: Dict[str, Any] = field(default_factory=dict)

    @property
    def doc_type(self):
        return self.model.DOC_TYPE


@dataclass
class TransitionRequest:
    """A `stateTransition` document, applied through the workflow state machine."""
    couch_id: str
    session_couch_id: str
    to_state: str
    from_state: Optional[str] = None
    actor_ref: Any = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    requested_at: Any = None

    doc_type = 'stateTransition'


# ============================================================================
# Registry
# ============================================================================

_REGISTRY = {}

# Upper bound of the integer columns on every supported backend
MAX_INTEGER = 2147483647


def register(doc_type, model=None, aliases=()):
    """Register a transformer for `doc_type` (and any alias names)."""
    def decorator(func):
        for name in (doc_type, *aliases):
            _REGISTRY[name] = (model, func)
        return func
    return decorator


def registered_types():
    return sorted(_REGISTRY)


def transform(doc):
    """
    Route a document to its transformer.

    Raises:
        UnknownDocumentType: `type` missing or not registered
        MissingRequiredField: a field the record cannot be keyed without is missing
        InvalidTimestamp: the business timestamp is present but unparseable
    """
    if not isinstance(doc, dict):
        raise UnknownDocumentType('<unknown>', None)

    doc_id = doc.get('_id')
    if not doc_id:
        raise MissingRequiredField('<unknown>', '_id')

    doc_type = doc.get('type')
    entry = _REGISTRY.get(doc_type) if isinstance(doc_type, str) else None
    if entry is None:
        raise UnknownDocumentType(doc_id, doc_type)

    model, func = entry
    return func(DocumentFields(doc), model)


# ============================================================================
# Field access
# ============================================================================

class DocumentFields:
    """Typed, first-present-wins access to the fields of one document."""

    def __init__(self, doc, source=None):
        self.doc = doc
        self.doc_id = doc['_id']
        self.source = source if source is not None else doc

    def nested(self, key):
        """Read fields from a nested object (falls back to the top level)."""
        inner = self.doc.get(key)
        return DocumentFields(self.doc, inner if isinstance(inner, dict) else self.doc)

    def first(self, *keys, default=None):
        for key in keys:
            value = self.source.get(key)
            if value is not None:
                return value
        return default

    def text(self, *keys, default=None):
        value = self.first(*keys)
        if value is None or value == '':
            return default
        return str(value)

    def json(self, *keys, default=None):
        return self.first(*keys, default=default)

    def boolean(self, *keys, default=False):
        value = self.first(*keys)
        if value is None:
            return default
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'y')
        return bool(value)

    def integer(self, *keys):
        value = self.first(*keys)
        if value is None or value == '':
            return None
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError):
            self._warn(keys[0], value, 'integer')
            return None
        if abs(number) > MAX_INTEGER:
            self._warn(keys[0], value, 'integer')
            return None
        return number

    def decimal(self, *keys):
        value = self.first(*keys)
        if value is None or value == '':
            return None
        try:
            return Decimal(str(value)).quantize(Decimal('0.01'))
        except (InvalidOperation, ValueError, OverflowError):
            self._warn(keys[0], value, 'decimal')
            return None

    def date(self, *keys):
        value = self.first(*keys)
        try:
            return parse_date_value(value)
        except ValueError:
            self._warn(keys[0], value, 'date')
            return None

    def timestamp(self, *keys, required=False):
        """
        Parse the first present key as a timestamp.

        Optional timestamps that fail to parse become None (the raw
        document keeps the original); required ones raise InvalidTimestamp.
        """
        value = self.first(*keys)
        try:
            return parse_timestamp(value)
        except ValueError:
            if required:
                raise InvalidTimestamp(self.doc_id, keys[0], value)
            self._warn(keys[0], value, 'timestamp')
            return None

    def _warn(self, field_name, value, kind):
        logger.warning(
            f'Unparseable {kind} field ignored',
            extra={
                'event': 'sync_field_unparseable',
                'doc_id': self.doc_id,
                'doc_type': self.doc.get('type'),
                'field': field_name,
                'value_type': type(value).__name__,
            }
        )


def _base_record(fields):
    """Columns shared by every mirrored table."""
    return {
        'couch_rev': fields.doc.get('_rev'),
        # Ordering key for conflict resolution: present-but-garbled is an error
        'couch_updated_at': fields.timestamp('updatedAt', 'updated_at', required=True),
        'raw_document': fields.doc,
        'is_deleted': False,
        'deleted_at': None,
    }


def _result(model, fields, record, actor_refs=None, create_only=None):
    return TransformResult(
        model=model,
        couch_id=fields.doc_id,
        record={**_base_record(fields), **record},
        actor_refs=actor_refs or {},
        create_only=create_only or {},
    )


# ============================================================================
# Patient
# ============================================================================

@register('clinicalPatient', Patient)
def transform_patient(fields, model):
    doc_id = fields.doc_id

    if fields.boolean('encrypted'):
        # Ciphertext payload: key the row by the short id embedded in `_id`
        _, sep, short_id = doc_id.partition(':')
        if not sep or not short_id:
            raise MissingRequiredField(doc_id, 'cpt')

        record = {name: None for name in model.CLINICAL_FIELDS}
        record.update({
            'cpt': short_id,
            'is_active': True,
            'is_encrypted': True,
        })
        return _result(model, fields, record)

    patient = fields.nested('patient')
    cpt = patient.text('cpt', 'id') or doc_id.partition(':')[2]
    if not cpt:
        raise MissingRequiredField(doc_id, 'cpt')

    date_of_birth = patient.date('dateOfBirth', 'dob')
    age_months = age_in_months(date_of_birth)
    if age_months is None:
        age_months = patient.integer('ageMonths')

    visit_count = patient.integer('visitCount')
    if visit_count is None:
        visit_count = 1

    record = {
        'cpt': cpt,
        'short_code': patient.text('shortCode'),
        'external_id': patient.text('externalId'),
        'date_of_birth': date_of_birth,
        'age_months': age_months,
        'gender': patient.text('gender'),
        'weight_kg': patient.decimal('weightKg'),
        'phone': patient.text('phone'),
        'visit_count': visit_count,
        'is_active': patient.boolean('isActive', default=True),
        'is_encrypted': False,
        'last_visit_at': patient.timestamp('lastVisit', 'lastVisitAt'),
        'source': patient.text('source'),
    }

    result = _result(model, fields, record, actor_refs={'created_by': patient.first('createdBy', 'createdByUserId')})

    # Business time may live on the nested object
    if result.record['couch_updated_at'] is None:
        result.record['couch_updated_at'] = patient.timestamp('updatedAt', required=True)

    return result


# ============================================================================
# Clinical session
# ============================================================================

@register('clinicalSession', ClinicalSession)
def transform_session(fields, model):
    record = {
        'session_uuid': fields.text('id', default=fields.doc_id),
        'patient_cpt': fields.text('patientCpt', 'patientId'),
        'stage': fields.text('stage', default='registration'),
        'status': fields.text('status', default='open'),
        'triage_priority': fields.text('triage', 'triagePriority', 'triage_priority', default='unknown'),
        'chief_complaint': fields.text('chiefComplaint', 'chief_complaint'),
        'notes': fields.text('notes'),
        'form_instance_ids': fields.json('formInstanceIds', 'form_instance_ids', default=[]),
        'session_created_at': fields.timestamp('createdAt'),
        'session_updated_at': fields.timestamp('updatedAt', 'updated_at'),
        'completed_at': fields.timestamp('completedAt'),
        'provider_role': fields.text('providerRole', 'createdByRole', 'role'),
        'synced_at': timezone.now(),
    }

    create_only = {}
    workflow_state = fields.text('workflowState', 'workflow_state')
    if workflow_state is not None:
        if workflow_state in WorkflowState.values:
            create_only['workflow_state'] = workflow_state
            create_only['workflow_state_updated_at'] = fields.timestamp(
                'workflowStateUpdatedAt', 'workflow_state_updated_at'
            )
        else:
            logger.warning(
                'Unknown workflow state in session document ignored',
                extra={'event': 'sync_unknown_workflow_state', 'doc_id': fields.doc_id, 'workflow_state': workflow_state}
            )

    return _result(
        model, fields, record,
        actor_refs={'created_by': fields.first('createdBy', 'createdByUserId', 'providerId', 'userId')},
        create_only=create_only,
    )


# ============================================================================
# Clinical form
# ============================================================================

@register('clinicalForm', ClinicalForm)
def transform_form(fields, model):
    record = {
        'form_uuid': fields.text('id', default=fields.doc_id),
        'session_couch_id': fields.text('sessionId', 'sessionCouchId'),
        'patient_cpt': fields.text('patientCpt', 'patientId'),
        'schema_id': fields.text('schemaId', default='unknown'),
        'schema_version': fields.text('schemaVersion'),
        'current_state_id': fields.text('currentStateId'),
        'status': fields.text('status', default='draft'),
        'sync_status': 'synced',
        'answers': fields.json('answers', default={}),
        'calculated': fields.json('calculated'),
        'audit_log': fields.json('auditLog'),
        'form_created_at': fields.timestamp('createdAt'),
        'form_updated_at': fields.timestamp('updatedAt', 'updated_at'),
        'completed_at': fields.timestamp('completedAt'),
        'creator_role': fields.text('creatorRole', 'createdByRole'),
        'synced_at': timezone.now(),
    }
    return _result(
        model, fields, record,
        actor_refs={'created_by': fields.first('createdBy', 'createdByUserId', 'userId')},
    )


# ============================================================================
# AI request log
# ============================================================================

@register('aiLog', AiRequest, aliases=('aiRequest',))
def transform_ai_request(fields, model):
    record = {
        'request_uuid': fields.text('requestId', 'id', default=fields.doc_id),
        'role': fields.text('role', 'userRole'),
        'session_couch_id': fields.text('sessionId', 'sessionCouchId'),
        'form_couch_id': fields.text('formInstanceId', 'formId'),
        'patient_cpt': fields.text('patientCpt', 'patientId'),
        'task': fields.text('task'),
        'use_case': fields.text('useCase'),
        'prompt_version': fields.text('promptVersion'),
        'input_hash': fields.text('promptHash', 'inputHash'),
        'prompt': fields.text('prompt'),
        'response': fields.text('output', 'response'),
        'safe_output': fields.text('safeOutput'),
        'model': fields.text('model'),
        'model_version': fields.text('modelVersion'),
        'latency_ms': fields.integer('latencyMs'),
        'was_overridden': fields.boolean('wasOverridden'),
        'risk_flags': fields.json('riskFlags'),
        'requested_at': fields.timestamp('createdAt', 'requestedAt') or timezone.now(),
    }
    return _result(
        model, fields, record,
        actor_refs={'user': fields.first('userId', 'user_id', 'createdBy')},
    )


# ============================================================================
# Referral
# ============================================================================

@register('referral', Referral)
def transform_referral(fields, model):
    record = {
        'referral_uuid': fields.text('referralId', 'id', default=fields.doc_id),
        'session_couch_id': fields.text('sessionId', 'sessionCouchId'),
        'assigned_to_role': fields.text('assignedToRole'),
        'status': fields.text('status', default='pending'),
        'priority': fields.text('priority', default='yellow'),
        'specialty': fields.text('specialty'),
        'reason': fields.text('reason'),
        'clinical_notes': fields.text('clinicalNotes', 'notes'),
        'rejection_reason': fields.text('rejectionReason'),
        'assigned_at': fields.timestamp('assignedAt'),
        'accepted_at': fields.timestamp('acceptedAt'),
        'completed_at': fields.timestamp('completedAt'),
        'synced_at': timezone.now(),
    }
    return _result(
        model, fields, record,
        actor_refs={
            'referring_user': fields.first('referringUserId', 'referredBy', 'createdBy'),
            'assigned_to_user': fields.first('assignedToUserId', 'assignedTo'),
        },
    )


# ============================================================================
# Radiology study
# ============================================================================

@register('radiologyStudy', RadiologyStudy)
def transform_radiology_study(fields, model):
    record = {
        'study_uuid': fields.text('studyId', 'id', default=fields.doc_id),
        'patient_cpt': fields.text('patientCpt', 'patientId'),
        'session_couch_id': fields.text('sessionId', 'sessionCouchId'),
        'modality': fields.text('modality'),
        'body_part': fields.text('bodyPart'),
        'study_type': fields.text('studyType'),
        'clinical_indication': fields.text('clinicalIndication'),
        'clinical_question': fields.text('clinicalQuestion'),
        'priority': fields.text('priority', default='routine'),
        'status': fields.text('status', default='pending'),
        'ai_priority_score': fields.integer('aiPriorityScore'),
        'ai_critical_flag': fields.boolean('aiCriticalFlag'),
        'ai_preliminary_report': fields.text('aiPreliminaryReport'),
        'dicom_series_count': fields.integer('dicomSeriesCount'),
        'dicom_storage_path': fields.text('dicomStoragePath'),
        'ordered_at': fields.timestamp('orderedAt', 'createdAt'),
        'scheduled_at': fields.timestamp('scheduledAt'),
        'performed_at': fields.timestamp('performedAt'),
        'images_available_at': fields.timestamp('imagesAvailableAt'),
        'study_completed_at': fields.timestamp('completedAt', 'studyCompletedAt'),
        'synced_at': timezone.now(),
    }
    return _result(
        model, fields, record,
        actor_refs={
            'referring_user': fields.first('referringUserId', 'orderedBy', 'createdBy'),
            'assigned_radiologist': fields.first('assignedRadiologistId', 'radiologistId'),
        },
    )


# ============================================================================
# Workflow transitions
# ============================================================================

@register('stateTransition')
def transform_state_transition(fields, model):
    session_couch_id = fields.text('sessionCouchId', 'sessionId')
    if not session_couch_id:
        raise MissingRequiredField(fields.doc_id, 'sessionId')

    to_state = fields.text('toState', 'to_state')
    if not to_state:
        raise MissingRequiredField(fields.doc_id, 'toState')

    metadata = fields.json('metadata', default={})
    if not isinstance(metadata, dict):
        metadata = {'value': metadata}

    return TransitionRequest(
        couch_id=fields.doc_id,
        session_couch_id=session_couch_id,
        to_state=to_state,
        from_state=fields.text('fromState', 'from_state'),
        actor_ref=fields.first('userId', 'actorId', 'createdBy'),
        reason=fields.text('reason'),
        metadata=metadata,
        requested_at=fields.timestamp('createdAt'),
    )
