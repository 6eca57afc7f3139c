"""
Tests for the clinical session workflow state machine.

Business rules:
- Only edges in the transition table are accepted
- CLOSED and CANCELLED are terminal
- Every accepted transition writes exactly one immutable audit record
"""
import itertools

import pytest
from django.core.exceptions import ValidationError

from apps.clinical import workflow
from apps.clinical.models import ClinicalSession, StateTransition, WorkflowState
from apps.clinical.signals import session_state_changed

EDGES = {
    ('NEW', 'TRIAGED'), ('NEW', 'CANCELLED'),
    ('TRIAGED', 'REFERRED'), ('TRIAGED', 'CANCELLED'),
    ('REFERRED', 'IN_GP_REVIEW'), ('REFERRED', 'CANCELLED'),
    ('IN_GP_REVIEW', 'UNDER_TREATMENT'), ('IN_GP_REVIEW', 'REFERRED'), ('IN_GP_REVIEW', 'CANCELLED'),
    ('UNDER_TREATMENT', 'CLOSED'), ('UNDER_TREATMENT', 'CANCELLED'),
}


class TestTransitionRules:
    """Pure validation: no database involved."""

    @pytest.mark.parametrize('from_state,to_state', list(itertools.product(WorkflowState.values, repeat=2)))
    def test_every_pair(self, from_state, to_state):
        assert workflow.can_transition(from_state, to_state) == ((from_state, to_state) in EDGES)

    @pytest.mark.parametrize('state', WorkflowState.values)
    def test_self_transitions_rejected(self, state):
        assert not workflow.can_transition(state, state)

    def test_terminal_states(self):
        assert workflow.is_terminal('CLOSED')
        assert workflow.is_terminal('CANCELLED')
        assert not workflow.is_terminal('NEW')
        assert workflow.allowed_transitions_for('CLOSED') == []

    def test_unknown_state_has_no_transitions(self):
        assert workflow.allowed_transitions_for('ON_HOLD') == []
        assert not workflow.can_transition('ON_HOLD', 'TRIAGED')

    def test_suggested_reasons(self):
        assert 'gp_accepted' in workflow.suggested_reasons('REFERRED', 'IN_GP_REVIEW')
        assert workflow.suggested_reasons('NEW', 'CLOSED') == []

    def test_config(self):
        config = workflow.get_config()
        assert config['initial_state'] == 'NEW'
        assert set(config['terminal_states']) == {'CLOSED', 'CANCELLED'}
        assert config['transitions']['IN_GP_REVIEW'] == ['UNDER_TREATMENT', 'REFERRED', 'CANCELLED']
        assert set(config['states']) == set(WorkflowState.values)


@pytest.mark.django_db
class TestTransition:

    def test_triaged_to_under_treatment_rejected(self, make_session, doctor_user):
        session = make_session(WorkflowState.TRIAGED)

        with pytest.raises(workflow.InvalidTransition) as exc_info:
            workflow.transition(session, 'UNDER_TREATMENT', actor=doctor_user)

        assert exc_info.value.current_state == 'TRIAGED'
        assert exc_info.value.requested_state == 'UNDER_TREATMENT'
        assert exc_info.value.allowed_transitions == ['REFERRED', 'CANCELLED']
        session.refresh_from_db()
        assert session.workflow_state == WorkflowState.TRIAGED
        assert StateTransition.objects.count() == 0

    def test_gp_review_to_under_treatment_accepted(self, make_session, doctor_user):
        session = make_session(WorkflowState.IN_GP_REVIEW)

        record = workflow.transition(session, 'UNDER_TREATMENT', actor=doctor_user, reason='treatment_plan_created')

        session.refresh_from_db()
        assert session.workflow_state == WorkflowState.UNDER_TREATMENT
        assert session.workflow_state_updated_at is not None
        assert StateTransition.objects.filter(session=session).count() == 1
        assert record.from_state == 'IN_GP_REVIEW'
        assert record.to_state == 'UNDER_TREATMENT'
        assert record.user_id == doctor_user.pk
        assert record.session_couch_id == session.couch_id

    def test_unknown_target_state(self, session):
        with pytest.raises(workflow.UnknownWorkflowState):
            workflow.transition(session, 'ON_HOLD')
        assert StateTransition.objects.count() == 0

    def test_terminal_state_rejects_everything(self, make_session):
        session = make_session(WorkflowState.CLOSED)
        for to_state in WorkflowState.values:
            with pytest.raises(workflow.InvalidTransition):
                workflow.transition(session, to_state)

    def test_validation_uses_stored_state(self, make_session):
        """A stale in-memory instance cannot skip a state."""
        session = make_session(WorkflowState.NEW)
        stale = ClinicalSession.objects.get(pk=session.pk)
        workflow.transition(session, 'CANCELLED')

        with pytest.raises(workflow.InvalidTransition):
            workflow.transition(stale, 'TRIAGED')

    def test_caller_instance_updated(self, session):
        workflow.transition(session, 'TRIAGED')
        assert session.workflow_state == 'TRIAGED'

    def test_full_pathway_history(self, session, doctor_user):
        workflow.transition(session, 'TRIAGED', actor=doctor_user)
        workflow.transition(session, 'REFERRED', actor=doctor_user)
        workflow.accept_referral(session, actor=doctor_user, notes='seen today')
        workflow.start_treatment(session, actor=doctor_user, treatment_plan='amoxicillin')
        workflow.close_session(session, 'treatment_completed', actor=doctor_user)

        steps = [(t.from_state, t.to_state) for t in workflow.history(session)]
        assert steps == [
            ('NEW', 'TRIAGED'),
            ('TRIAGED', 'REFERRED'),
            ('REFERRED', 'IN_GP_REVIEW'),
            ('IN_GP_REVIEW', 'UNDER_TREATMENT'),
            ('UNDER_TREATMENT', 'CLOSED'),
        ]
        closing = workflow.history(session).last()
        assert 'closed_at' in closing.metadata

    def test_specialist_referral_loop(self, make_session):
        session = make_session(WorkflowState.IN_GP_REVIEW)
        record = workflow.request_specialist_referral(session, 'cardiology', notes='murmur')
        assert record.to_state == 'REFERRED'
        assert record.metadata['specialist_type'] == 'cardiology'

    def test_cancel_session(self, make_session):
        session = make_session(WorkflowState.REFERRED)
        workflow.cancel_session(session, 'patient_no_show')
        session.refresh_from_db()
        assert session.workflow_state == WorkflowState.CANCELLED

    def test_reject_referral(self, make_session):
        session = make_session(WorkflowState.IN_GP_REVIEW)

        record = workflow.reject_referral(session, 'outside catchment')

        assert record.to_state == 'CANCELLED'
        assert record.reason == 'referral_rejected'
        assert record.metadata == {'referral_rejected': True, 'rejection_reason': 'outside catchment'}

    def test_reject_referral_after_cancellation_is_invalid(self, make_session):
        session = make_session(WorkflowState.UNDER_TREATMENT)
        workflow.cancel_session(session, 'patient_no_show')
        with pytest.raises(workflow.InvalidTransition):
            workflow.reject_referral(session, 'too late')

    def test_last_transition(self, session):
        assert workflow.last_transition(session) is None
        workflow.transition(session, 'TRIAGED')
        workflow.transition(session, 'REFERRED')
        assert workflow.last_transition(session).to_state == 'REFERRED'


@pytest.mark.django_db
class TestTransitionRecords:

    def test_records_are_immutable(self, session):
        record = workflow.transition(session, 'TRIAGED')
        record.reason = 'rewritten'

        with pytest.raises(ValidationError):
            record.save()

    def test_signal_sent_on_commit(self, session, django_capture_on_commit_callbacks):
        received = []

        def handler(sender, **kwargs):
            received.append(kwargs)

        session_state_changed.connect(handler)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                record = workflow.transition(session, 'TRIAGED')
        finally:
            session_state_changed.disconnect(handler)

        assert len(received) == 1
        assert received[0]['from_state'] == 'NEW'
        assert received[0]['to_state'] == 'TRIAGED'
        assert received[0]['transition'].pk == record.pk

    def test_no_signal_for_rejected_transition(self, make_session, django_capture_on_commit_callbacks):
        session = make_session(WorkflowState.TRIAGED)
        with django_capture_on_commit_callbacks() as callbacks:
            with pytest.raises(workflow.InvalidTransition):
                workflow.transition(session, 'CLOSED')
        assert callbacks == []
