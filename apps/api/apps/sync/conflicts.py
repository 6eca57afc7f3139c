"""
Conflict resolution between a stored row and an incoming document.

Ordering is last-write-wins on the document's own business time
(`updatedAt` written by the device), ties going to the incoming
document. When either side lacks a business time the CouchDB revision
generation is compared instead. With neither available the incoming
document is applied and a warning is logged: device clocks are trusted
and two devices editing the same document offline can still lose an
edit.
"""
import logging

logger = logging.getLogger(__name__)


def revision_generation(rev):
    """Generation number of a CouchDB revision ('3-abc' -> 3), or None."""
    if not rev:
        return None
    head, _, _ = str(rev).partition('-')
    try:
        return int(head)
    except ValueError:
        return None


def should_apply(existing, incoming):
    """
    Decide whether `incoming` may overwrite `existing`.

    Args:
        existing: stored model instance, or None
        incoming: TransformResult for the same couch_id

    Returns:
        bool
    """
    if existing is None:
        return True

    existing_time = existing.couch_updated_at
    incoming_time = incoming.record.get('couch_updated_at')
    if existing_time is not None and incoming_time is not None:
        return incoming_time >= existing_time

    existing_gen = revision_generation(existing.couch_rev)
    incoming_gen = revision_generation(incoming.record.get('couch_rev'))
    if existing_gen is not None and incoming_gen is not None:
        return incoming_gen >= existing_gen

    logger.warning(
        'No business time or revision to order documents; applying incoming',
        extra={
            'event': 'sync_conflict_unordered',
            'doc_id': incoming.couch_id,
            'doc_type': incoming.doc_type,
        }
    )
    return True
