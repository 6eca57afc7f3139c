"""
Clinical signals for workflow events.
"""
from django.dispatch import Signal

# Signal emitted after a workflow transition commits
# Payload (NO PHI):
#   - session: ClinicalSession after the transition
#   - transition: the StateTransition record
#   - from_state, to_state: workflow state values
session_state_changed = Signal()


# Example listener (commented - for future integrations):
#
# from django.dispatch import receiver
# from apps.clinical.signals import session_state_changed
#
# @receiver(session_state_changed)
# def on_session_state_changed(sender, session, transition, from_state, to_state, **kwargs):
#     if to_state == 'REFERRED':
#         notify_gp_queue(session.couch_id)
