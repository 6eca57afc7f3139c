"""
CouchDB -> relational sync loop.

A cycle reads the cursor, fetches one page of the change feed, applies
each change in feed order (one transaction per document) and advances
the cursor. A failure to fetch or to reach the database aborts the
cycle and leaves the cursor where it was, so the same page is retried.
A document that fails validation, a database constraint or in any other
unexpected way is counted as errored; it never blocks the documents
after it.
"""
import logging
import threading
from dataclasses import dataclass

from django.conf import settings

from apps.clinical import workflow
from apps.clinical.models import ClinicalSession, StateTransition
from apps.core.observability import metrics
from apps.core.observability.correlation import sync_context
from apps.core.observability.events import log_document_skipped, log_sync_cycle

from .cursor import CursorStore
from .exceptions import (
    ChangeSourceError,
    ConstraintViolation,
    DocumentValidationError,
    StoreUnavailable,
)
from .identity import IdentityResolver
from .transformers import TransitionRequest, transform
from .writer import UpsertWriter, WriteOutcome, store_errors

logger = logging.getLogger(__name__)

APPLIED = 'applied'
SKIPPED = 'skipped'
ERRORED = 'errored'


@dataclass
class CycleResult:
    """Outcome of one sync cycle."""
    since: str
    last_seq: str
    fetched: int = 0
    applied: int = 0
    skipped: int = 0
    errored: int = 0
    has_more: bool = False
    stopped: bool = False

    @property
    def clean(self):
        return self.errored == 0

    def count(self, outcome):
        setattr(self, outcome, getattr(self, outcome) + 1)


class SyncEngine:
    """
    Drives the change feed into the mirrored tables.

    Usage:
        with CouchDbClient.from_settings() as client:
            engine = SyncEngine(client)
            engine.run_once()        # one page
            engine.drain()           # until the feed is caught up
            engine.run_forever()     # daemon; stop() from a signal handler
    """

    def __init__(self, client, cursor_store=None, batch_size=None, poll_interval=None, max_backoff=None):
        self.client = client
        self.cursor = cursor_store or CursorStore()
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.poll_interval = poll_interval if poll_interval is not None else settings.SYNC_POLL_INTERVAL
        self.max_backoff = max_backoff if max_backoff is not None else settings.SYNC_MAX_BACKOFF
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self):
        """Finish the in-flight document, advance the cursor and return."""
        self._stop_event.set()

    @property
    def stopping(self):
        return self._stop_event.is_set()

    def backoff(self, failures):
        """Delay after `failures` consecutive failed cycles."""
        return min(self.poll_interval * (2 ** failures), self.max_backoff)

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    @metrics.track_duration(metrics.sync_cycle_duration_seconds)
    def run_once(self):
        """
        Run one cycle.

        Returns:
            CycleResult

        Raises:
            ChangeSourceError: the feed could not be read (cursor untouched)
            StoreUnavailable: the database could not be reached (cursor untouched)
        """
        with sync_context():
            try:
                result = self._cycle()
            except (ChangeSourceError, StoreUnavailable) as e:
                self._record_failure(e)
                raise

            metrics.sync_cycles_total.labels(result='completed').inc()
            log_sync_cycle(
                'success', result.since, result.last_seq,
                fetched=result.fetched, applied=result.applied,
                skipped=result.skipped, errored=result.errored,
            )
            return result

    def _cycle(self):
        with store_errors('<cursor>'):
            since = self.cursor.read()

        batch = self.client.fetch_changes(since, self.batch_size)
        metrics.sync_pending_changes.set(batch.pending)

        result = CycleResult(since=since, last_seq=since, fetched=len(batch.changes), has_more=batch.has_more)
        writer = UpsertWriter(IdentityResolver())

        processed_seq = since
        for change in batch.changes:
            if self.stopping:
                result.stopped = True
                result.has_more = True
                break
            result.count(self._process(change, writer))
            processed_seq = change.seq

        result.last_seq = processed_seq if result.stopped else batch.last_seq

        with store_errors('<cursor>'):
            self.cursor.advance(
                result.last_seq,
                applied=result.applied,
                skipped=result.skipped,
                errored=result.errored,
            )
        return result

    def _record_failure(self, error):
        metrics.sync_cycles_total.labels(result='failed').inc()
        log_sync_cycle('failure', None, None, error=str(error), error_type=type(error).__name__)
        try:
            with store_errors('<cursor>'):
                self.cursor.record_failure(error)
        except StoreUnavailable:
            logger.warning(
                'Could not record failed cycle on the cursor',
                extra={'event': 'sync_cursor_failure_unrecorded'}
            )

    def drain(self, max_cycles=None):
        """Run cycles until the feed reports nothing pending (or stop())."""
        results = []
        while not self.stopping:
            result = self.run_once()
            results.append(result)
            if not result.has_more or result.fetched == 0:
                break
            if max_cycles is not None and len(results) >= max_cycles:
                break
        return results

    def run_forever(self):
        """
        Poll until stop() is called.

        Continues immediately while the feed has more changes; backs off
        exponentially (capped at max_backoff) after failed cycles.
        """
        failures = 0
        logger.info(
            'Sync worker started',
            extra={'event': 'sync_worker_started', 'poll_interval': self.poll_interval, 'batch_size': self.batch_size}
        )

        while not self.stopping:
            try:
                result = self.run_once()
            except (ChangeSourceError, StoreUnavailable) as e:
                failures += 1
                delay = self.backoff(failures)
                logger.error(
                    f'Sync cycle failed, retrying in {delay}s',
                    extra={'event': 'sync_cycle_retry', 'error': str(e), 'failures': failures, 'delay_seconds': delay}
                )
            else:
                failures = 0
                delay = 0 if result.has_more and result.fetched else self.poll_interval

            if delay:
                self._stop_event.wait(delay)

        logger.info('Sync worker stopped', extra={'event': 'sync_worker_stopped'})

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _process(self, change, writer):
        """Apply one change; returns APPLIED, SKIPPED or ERRORED."""
        doc_type = change.doc.get('type') if isinstance(change.doc, dict) else None

        if change.doc_id.startswith('_design/'):
            metrics.sync_documents_total.labels(doc_type='design', result=SKIPPED).inc()
            return SKIPPED

        try:
            if change.deleted:
                outcome = writer.tombstone(change.doc_id, change.rev)
                label = outcome.result
            else:
                transformed = transform(change.doc)
                if isinstance(transformed, TransitionRequest):
                    label = self._apply_transition(transformed, writer.resolver)
                else:
                    label = writer.apply(transformed).result
        except (DocumentValidationError, ConstraintViolation, workflow.InvalidTransition) as e:
            metrics.sync_documents_total.labels(doc_type=doc_type or 'unknown', result=ERRORED).inc()
            log_document_skipped(
                change.doc_id,
                reason=str(e),
                doc_type=doc_type,
                result=ERRORED,
                error_type=type(e).__name__,
                seq=change.seq,
            )
            return ERRORED
        except StoreUnavailable:
            raise
        except Exception as e:
            # Unanticipated malformed input; the cursor must still advance
            metrics.exceptions_total.labels(exception_type=type(e).__name__, location='sync').inc()
            metrics.sync_documents_total.labels(doc_type=doc_type or 'unknown', result=ERRORED).inc()
            logger.error(
                f'Unexpected error applying document: {type(e).__name__}',
                exc_info=True,
                extra={
                    'event': 'sync_document_failed',
                    'doc_id': change.doc_id,
                    'doc_type': doc_type,
                    'error_type': type(e).__name__,
                    'seq': change.seq,
                }
            )
            return ERRORED

        metrics.sync_documents_total.labels(doc_type=doc_type or 'unknown', result=label).inc()
        if label in (WriteOutcome.CREATED, WriteOutcome.UPDATED, WriteOutcome.TOMBSTONED):
            return APPLIED
        return SKIPPED

    def _apply_transition(self, request, resolver):
        """Replay a stateTransition document through the state machine (once)."""
        with store_errors(request.couch_id):
            if StateTransition.objects.filter(couch_id=request.couch_id).exists():
                return 'duplicate'

            session = ClinicalSession.objects.filter(couch_id=request.session_couch_id).first()
            if session is None:
                raise DocumentValidationError(
                    request.couch_id, f'session "{request.session_couch_id}" has not been synced'
                )

            if request.from_state and request.from_state != session.workflow_state:
                logger.warning(
                    'Transition document was authored against a different state',
                    extra={
                        'event': 'sync_transition_state_mismatch',
                        'doc_id': request.couch_id,
                        'reported_from_state': request.from_state,
                        'stored_state': session.workflow_state,
                    }
                )

            metadata = dict(request.metadata)
            if request.requested_at is not None:
                metadata['requested_at'] = request.requested_at.isoformat()

            workflow.transition(
                session,
                request.to_state,
                actor=resolver.resolve(request.actor_ref),
                reason=request.reason,
                metadata=metadata,
                couch_id=request.couch_id,
            )
        return WriteOutcome.CREATED
