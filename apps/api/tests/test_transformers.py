"""
Tests for document transformers (CouchDB document -> relational record).
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from apps.clinical.models import (
    AiRequest,
    ClinicalForm,
    ClinicalSession,
    Patient,
    RadiologyStudy,
    Referral,
    WorkflowState,
)
from apps.sync.exceptions import InvalidTimestamp, MissingRequiredField, UnknownDocumentType
from apps.sync.transformers import TransformResult, TransitionRequest, registered_types, transform


class TestRouting:
    """Documents are routed by their `type` field."""

    def test_registered_types(self):
        assert set(registered_types()) >= {
            'clinicalPatient', 'clinicalSession', 'clinicalForm', 'aiLog',
            'aiRequest', 'referral', 'radiologyStudy', 'stateTransition',
        }

    def test_missing_type_is_an_error(self):
        with pytest.raises(UnknownDocumentType) as exc_info:
            transform({'_id': 'thing:1', '_rev': '1-a'})
        assert exc_info.value.doc_type is None
        assert exc_info.value.doc_id == 'thing:1'

    def test_unknown_type_is_an_error(self):
        with pytest.raises(UnknownDocumentType) as exc_info:
            transform({'_id': 'thing:1', 'type': 'invoice'})
        assert exc_info.value.doc_type == 'invoice'

    def test_missing_id_is_an_error(self):
        with pytest.raises(MissingRequiredField):
            transform({'type': 'clinicalSession'})

    def test_non_object_document_is_an_error(self):
        with pytest.raises(UnknownDocumentType):
            transform(None)


class TestPatientTransformer:

    def test_encrypted_patient(self):
        """Ciphertext documents are keyed by the short id in `_id`."""
        doc = {
            '_id': 'patient:AB12',
            '_rev': '1-x',
            'type': 'clinicalPatient',
            'encrypted': True,
            'data': 'b64-ciphertext',
        }

        result = transform(doc)

        assert isinstance(result, TransformResult)
        assert result.model is Patient
        assert result.couch_id == 'patient:AB12'
        assert result.record['cpt'] == 'AB12'
        assert result.record['is_active'] is True
        assert result.record['is_encrypted'] is True
        for name in Patient.CLINICAL_FIELDS:
            assert result.record[name] is None
        assert result.record['raw_document'] == doc
        assert result.record['couch_updated_at'] is None

    def test_encrypted_patient_without_short_id(self):
        with pytest.raises(MissingRequiredField) as exc_info:
            transform({'_id': 'AB12', 'type': 'clinicalPatient', 'encrypted': True})
        assert exc_info.value.field == 'cpt'

    def test_plaintext_patient(self, patient_doc):
        result = transform(patient_doc(updated_at='2026-03-01T10:00:00Z'))

        assert result.record['cpt'] == 'CD34'
        assert result.record['is_encrypted'] is False
        assert result.record['gender'] == 'female'
        assert result.record['weight_kg'] == Decimal('9.50')
        assert result.record['visit_count'] == 2
        assert result.record['date_of_birth'].isoformat() == '2024-01-15'
        assert result.record['age_months'] is not None
        # Business time read from the nested patient object
        assert result.record['couch_updated_at'] == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_plaintext_patient_falls_back_to_id_suffix(self):
        result = transform({
            '_id': 'patient:EF56',
            'type': 'clinicalPatient',
            'patient': {'gender': 'male'},
        })
        assert result.record['cpt'] == 'EF56'

    def test_patient_actor_reference(self, patient_doc):
        result = transform(patient_doc(createdBy='mobile-nurse-1'))
        assert result.actor_refs == {'created_by': 'mobile-nurse-1'}

    def test_unparseable_optional_fields_become_none(self, patient_doc):
        result = transform(patient_doc(weightKg='heavy', dateOfBirth='soon', lastVisit='never'))
        assert result.record['weight_kg'] is None
        assert result.record['date_of_birth'] is None
        assert result.record['last_visit_at'] is None

    def test_zero_visit_count_is_kept(self, patient_doc):
        assert transform(patient_doc(visitCount=0)).record['visit_count'] == 0

    def test_missing_visit_count_defaults_to_one(self, patient_doc):
        doc = patient_doc()
        del doc['patient']['visitCount']
        assert transform(doc).record['visit_count'] == 1


class TestSessionTransformer:

    def test_session_fields(self, session_doc):
        result = transform(session_doc(chiefComplaint='fever', formInstanceIds=['form:1'], createdBy=7))

        assert result.model is ClinicalSession
        assert result.record['patient_cpt'] == 'AB12'
        assert result.record['triage_priority'] == 'green'
        assert result.record['chief_complaint'] == 'fever'
        assert result.record['form_instance_ids'] == ['form:1']
        assert result.record['couch_rev'] == '1-a'
        assert result.record['couch_updated_at'] == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert result.actor_refs == {'created_by': 7}

    def test_epoch_updated_at(self, session_doc):
        result = transform(session_doc(updated_at=1709287200000))
        assert result.record['couch_updated_at'] == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_garbled_updated_at_is_rejected(self, session_doc):
        with pytest.raises(InvalidTimestamp) as exc_info:
            transform(session_doc(updated_at='last tuesday'))
        assert exc_info.value.field == 'updatedAt'

    def test_workflow_state_only_seeds_creation(self, session_doc):
        result = transform(session_doc(workflowState='TRIAGED'))
        assert 'workflow_state' not in result.record
        assert result.create_only['workflow_state'] == WorkflowState.TRIAGED

    def test_unknown_workflow_state_is_ignored(self, session_doc):
        result = transform(session_doc(workflowState='ON_HOLD'))
        assert result.create_only == {}

    def test_unknown_fields_survive_in_raw_document(self, session_doc):
        doc = session_doc(deviceBattery=12)
        result = transform(doc)
        assert result.record['raw_document']['deviceBattery'] == 12


class TestOtherTransformers:

    def test_form(self):
        result = transform({
            '_id': 'form:f1',
            '_rev': '2-b',
            'type': 'clinicalForm',
            'sessionId': 'session:s1',
            'schemaId': 'peds_respiratory',
            'answers': {'resp_rate': 52},
            'updatedAt': '2026-03-01T10:00:00Z',
        })
        assert result.model is ClinicalForm
        assert result.record['session_couch_id'] == 'session:s1'
        assert result.record['schema_id'] == 'peds_respiratory'
        assert result.record['answers'] == {'resp_rate': 52}

    @pytest.mark.parametrize('doc_type', ['aiLog', 'aiRequest'])
    def test_ai_request(self, doc_type):
        result = transform({
            '_id': 'ai:1',
            'type': doc_type,
            'task': 'triage_explain',
            'latencyMs': '840',
            'wasOverridden': 'true',
            'userId': 'nurse@test.com',
        })
        assert result.model is AiRequest
        assert result.record['latency_ms'] == 840
        assert result.record['was_overridden'] is True
        assert result.record['requested_at'] is not None
        assert result.actor_refs == {'user': 'nurse@test.com'}

    @pytest.mark.parametrize('latency', [float('inf'), float('-inf'), float('nan'), 'Infinity', 10 ** 20, -(10 ** 12)])
    def test_out_of_range_integers_become_none(self, latency):
        result = transform({'_id': 'ai:2', 'type': 'aiLog', 'latencyMs': latency})
        assert result.record['latency_ms'] is None

    def test_infinite_decimal_becomes_none(self, patient_doc):
        assert transform(patient_doc(weightKg=float('inf'))).record['weight_kg'] is None

    def test_referral(self):
        result = transform({
            '_id': 'referral:r1',
            'type': 'referral',
            'sessionId': 'session:s1',
            'priority': 'red',
            'referringUserId': 3,
            'assignedToUserId': 'mobile-doctor-1',
        })
        assert result.model is Referral
        assert result.record['priority'] == 'red'
        assert result.actor_refs == {'referring_user': 3, 'assigned_to_user': 'mobile-doctor-1'}

    def test_radiology_study(self):
        result = transform({
            '_id': 'study:x1',
            'type': 'radiologyStudy',
            'modality': 'XR',
            'aiCriticalFlag': True,
            'orderedAt': '2026-03-01T08:00:00Z',
        })
        assert result.model is RadiologyStudy
        assert result.record['modality'] == 'XR'
        assert result.record['ai_critical_flag'] is True
        assert result.record['ordered_at'] == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class TestStateTransitionTransformer:

    def test_state_transition_request(self):
        result = transform({
            '_id': 'transition:t1',
            'type': 'stateTransition',
            'sessionCouchId': 'session:s1',
            'fromState': 'NEW',
            'toState': 'TRIAGED',
            'userId': 'mobile-nurse-1',
            'reason': 'assessment_completed',
        })
        assert isinstance(result, TransitionRequest)
        assert result.session_couch_id == 'session:s1'
        assert result.to_state == 'TRIAGED'
        assert result.from_state == 'NEW'
        assert result.actor_ref == 'mobile-nurse-1'

    def test_state_transition_requires_session(self):
        with pytest.raises(MissingRequiredField):
            transform({'_id': 'transition:t1', 'type': 'stateTransition', 'toState': 'TRIAGED'})

    def test_state_transition_requires_target(self):
        with pytest.raises(MissingRequiredField):
            transform({'_id': 'transition:t1', 'type': 'stateTransition', 'sessionId': 'session:s1'})
