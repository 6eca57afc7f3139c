"""
Domain events logging helpers.

Provides structured event logging for sync and workflow operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'sync_document_applied', 'workflow_transition')
        entity_type: Type of entity (e.g., 'ClinicalSession')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, skipped, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'sync_document_applied',
            entity_type='ClinicalSession',
            entity_id='session:abc',
            result='updated',
            couch_rev='3-f00'
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error', 'errored']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'rejected', 'skipped', 'stale']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_document_applied(model_name, couch_id, outcome, **extra):
    """Log a mirrored document written by the sync engine."""
    log_domain_event(
        'sync_document_applied',
        entity_type=model_name,
        entity_id=couch_id,
        result=outcome,
        **extra
    )


def log_document_skipped(couch_id, reason, doc_type=None, result='skipped', **extra):
    """Log a change the sync engine did not apply (validation, conflict, constraint)."""
    log_domain_event(
        'sync_document_skipped',
        entity_type=doc_type,
        entity_id=couch_id,
        result=result,
        reason=reason,
        **extra
    )


def log_sync_cycle(result, since, last_seq, **counts):
    """Log the end of a sync cycle."""
    log_domain_event(
        'sync_cycle_completed' if result == 'success' else 'sync_cycle_failed',
        entity_type='SyncCursor',
        result=result,
        since=since,
        last_seq=last_seq,
        **counts
    )


def log_workflow_transition(session, from_state, to_state, result='success', **extra):
    """Log a clinical session workflow transition (accepted or rejected)."""
    log_domain_event(
        'workflow_transition',
        entity_type='ClinicalSession',
        entity_id=session.couch_id,
        entity_ids={'session_id': str(session.pk)},
        result=result,
        from_state=from_state,
        to_state=to_state,
        **extra
    )
