"""
Clinical session workflow state machine.

    NEW -> TRIAGED, CANCELLED
    TRIAGED -> REFERRED, CANCELLED
    REFERRED -> IN_GP_REVIEW, CANCELLED
    IN_GP_REVIEW -> UNDER_TREATMENT, REFERRED, CANCELLED
    UNDER_TREATMENT -> CLOSED, CANCELLED
    CLOSED, CANCELLED: terminal

Validation (`can_transition`) is a pure function of the two states. An
accepted transition updates the session and appends a StateTransition
in one transaction, with the session row locked so concurrent requests
for the same session are serialized.
"""
from django.db import transaction
from django.utils import timezone

from apps.core.observability import metrics
from apps.core.observability.events import log_workflow_transition

from .models import ClinicalSession, StateTransition, WorkflowState
from .signals import session_state_changed


# BUSINESS RULE: Allowed workflow transitions
TRANSITIONS = {
    WorkflowState.NEW: [WorkflowState.TRIAGED, WorkflowState.CANCELLED],
    WorkflowState.TRIAGED: [WorkflowState.REFERRED, WorkflowState.CANCELLED],
    WorkflowState.REFERRED: [WorkflowState.IN_GP_REVIEW, WorkflowState.CANCELLED],
    WorkflowState.IN_GP_REVIEW: [
        WorkflowState.UNDER_TREATMENT,
        WorkflowState.REFERRED,
        WorkflowState.CANCELLED,
    ],
    WorkflowState.UNDER_TREATMENT: [WorkflowState.CLOSED, WorkflowState.CANCELLED],
    WorkflowState.CLOSED: [],     # Terminal state
    WorkflowState.CANCELLED: [],  # Terminal state
}

# Reasons offered to clinicians per transition (free text is also accepted)
TRANSITION_REASONS = {
    'NEW->TRIAGED': ['assessment_completed', 'vitals_recorded'],
    'NEW->CANCELLED': ['registered_in_error', 'patient_left'],
    'TRIAGED->REFERRED': ['specialist_needed', 'gp_consultation_required', 'complex_case'],
    'TRIAGED->CANCELLED': ['patient_left', 'duplicate_session'],
    'REFERRED->IN_GP_REVIEW': ['gp_accepted', 'review_started'],
    'REFERRED->CANCELLED': ['referral_cancelled', 'patient_no_show'],
    'IN_GP_REVIEW->UNDER_TREATMENT': ['treatment_plan_created', 'medication_started'],
    'IN_GP_REVIEW->REFERRED': ['specialist_referral', 'secondary_consultation'],
    'IN_GP_REVIEW->CANCELLED': ['referral_rejected', 'patient_no_show'],
    'UNDER_TREATMENT->CLOSED': ['treatment_completed', 'patient_recovered', 'patient_discharged'],
    'UNDER_TREATMENT->CANCELLED': ['treatment_abandoned', 'transferred_out'],
}


class InvalidTransition(Exception):
    """
    Requested transition is not in the edge table.

    Carries the allowed next states so API callers can offer them.
    """

    def __init__(self, current_state, requested_state, allowed_transitions=None):
        self.current_state = current_state
        self.requested_state = requested_state
        if allowed_transitions is None:
            allowed_transitions = allowed_transitions_for(current_state)
        self.allowed_transitions = list(allowed_transitions)
        super().__init__(
            f'Invalid transition from {current_state} to {requested_state}. '
            f'Allowed: {", ".join(self.allowed_transitions) or "none (terminal state)"}'
        )


class UnknownWorkflowState(InvalidTransition):
    """Requested (or stored) state is not a workflow state at all."""


# ============================================================================
# Pure rules
# ============================================================================

def allowed_transitions_for(state):
    """Next states reachable from `state` (empty for terminal or unknown states)."""
    return [str(s) for s in TRANSITIONS.get(state, [])]


def can_transition(current_state, to_state):
    return to_state in TRANSITIONS.get(current_state, [])


def is_terminal(state):
    return state in TRANSITIONS and not TRANSITIONS[state]


def suggested_reasons(from_state, to_state):
    return list(TRANSITION_REASONS.get(f'{from_state}->{to_state}', []))


def get_config():
    """State machine description for clients."""
    return {
        'states': list(WorkflowState.values),
        'initial_state': WorkflowState.NEW.value,
        'terminal_states': [s for s in WorkflowState.values if is_terminal(s)],
        'transitions': {str(state): allowed_transitions_for(state) for state in TRANSITIONS},
        'transition_reasons': TRANSITION_REASONS,
    }


# ============================================================================
# Transitions
# ============================================================================

def transition(session, to_state, actor=None, reason=None, metadata=None, couch_id=None):
    """
    Move `session` to `to_state`.

    Args:
        session: ClinicalSession
        to_state: target WorkflowState value
        actor: User instance or user id (None for unattributed transitions)
        reason: free text or one of suggested_reasons()
        metadata: extra JSON stored on the transition record
        couch_id: id of the originating stateTransition document, if any

    Returns:
        StateTransition

    Raises:
        UnknownWorkflowState: `to_state` is not a workflow state
        InvalidTransition: the edge is not allowed from the current state
    """
    if to_state not in WorkflowState.values:
        _reject(session, session.workflow_state, to_state)
        raise UnknownWorkflowState(session.workflow_state, to_state)

    user_id = getattr(actor, 'pk', actor)

    with transaction.atomic():
        locked = ClinicalSession.objects.select_for_update().get(pk=session.pk)
        from_state = locked.workflow_state

        if not can_transition(from_state, to_state):
            _reject(locked, from_state, to_state)
            raise InvalidTransition(from_state, to_state)

        now = timezone.now()
        record = StateTransition.objects.create(
            session=locked,
            session_couch_id=locked.couch_id,
            from_state=from_state,
            to_state=to_state,
            user_id=user_id,
            reason=reason,
            metadata=metadata or {},
            couch_id=couch_id,
        )

        locked.workflow_state = to_state
        locked.workflow_state_updated_at = now
        locked.save(update_fields=['workflow_state', 'workflow_state_updated_at', 'updated_at'])

        transaction.on_commit(lambda: session_state_changed.send(
            sender=ClinicalSession,
            session=locked,
            transition=record,
            from_state=from_state,
            to_state=to_state,
        ))

    # Keep the caller's instance in step with the database
    session.workflow_state = to_state
    session.workflow_state_updated_at = now

    metrics.workflow_transitions_total.labels(
        from_state=from_state, to_state=to_state, result='success'
    ).inc()
    log_workflow_transition(locked, from_state, to_state, transition_id=str(record.pk), reason=reason)
    return record


def _reject(session, from_state, to_state):
    metrics.workflow_transitions_total.labels(
        from_state=str(from_state), to_state=str(to_state), result='rejected'
    ).inc()
    log_workflow_transition(
        session, from_state, to_state, result='rejected',
        allowed_transitions=allowed_transitions_for(from_state),
    )


def accept_referral(session, actor=None, notes=None):
    """GP picks up a referred session (REFERRED -> IN_GP_REVIEW)."""
    return transition(session, WorkflowState.IN_GP_REVIEW, actor, 'gp_accepted', {'notes': notes})


def reject_referral(session, reason, actor=None):
    """GP declines a session under review (IN_GP_REVIEW -> CANCELLED)."""
    return transition(
        session, WorkflowState.CANCELLED, actor, 'referral_rejected',
        {'referral_rejected': True, 'rejection_reason': reason},
    )


def start_treatment(session, actor=None, treatment_plan=None):
    """IN_GP_REVIEW -> UNDER_TREATMENT."""
    return transition(
        session, WorkflowState.UNDER_TREATMENT, actor, 'treatment_plan_created',
        {'treatment_plan': treatment_plan},
    )


def request_specialist_referral(session, specialist_type, actor=None, notes=None):
    """IN_GP_REVIEW -> REFERRED."""
    return transition(
        session, WorkflowState.REFERRED, actor, 'specialist_referral',
        {'specialist_type': specialist_type, 'notes': notes},
    )


def close_session(session, reason, actor=None, metadata=None):
    """UNDER_TREATMENT -> CLOSED."""
    metadata = dict(metadata or {})
    metadata['closed_at'] = timezone.now().isoformat()
    return transition(session, WorkflowState.CLOSED, actor, reason, metadata)


def cancel_session(session, reason, actor=None):
    """Any non-terminal state -> CANCELLED."""
    return transition(session, WorkflowState.CANCELLED, actor, reason)


def history(session):
    """Transition records for `session`, oldest first."""
    return session.state_transitions.select_related('user').order_by('created_at', 'id')


def last_transition(session):
    return history(session).last()
