"""
Upsert writer for mirrored documents.

One document = one transaction. The existing row is locked, the
conflict resolver decides whether the incoming document wins, and the
row is inserted or updated by `couch_id`.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

from django.db import DataError, IntegrityError, InterfaceError, OperationalError, transaction
from django.utils import timezone

from apps.clinical.models import MIRRORED_MODELS, Patient
from apps.core.observability import metrics
from apps.core.observability.events import log_document_applied, log_document_skipped

from .conflicts import should_apply
from .exceptions import ConstraintViolation, ExternalIdCollision, StoreUnavailable
from .identity import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass
class WriteOutcome:
    CREATED = 'created'
    UPDATED = 'updated'
    STALE = 'stale'
    TOMBSTONED = 'tombstoned'
    MISSING = 'missing'

    result: str
    instance: Optional[Any] = None

    @property
    def applied(self):
        return self.result in (self.CREATED, self.UPDATED, self.TOMBSTONED)


@contextmanager
def store_errors(doc_id):
    """Translate database errors into sync errors."""
    try:
        yield
    except (IntegrityError, DataError) as e:
        raise ConstraintViolation(doc_id, str(e)) from e
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(str(e)) from e


class UpsertWriter:
    """Applies TransformResults and deletions to the mirrored tables."""

    def __init__(self, resolver=None):
        self.resolver = resolver or IdentityResolver()

    def apply(self, result):
        """
        Insert or update the row for `result.couch_id`.

        Returns:
            WriteOutcome (created, updated or stale)

        Raises:
            ExternalIdCollision: the id already lives in another table
            ConstraintViolation: the database rejected the row
            StoreUnavailable: the database could not be reached
        """
        with store_errors(result.couch_id):
            self._check_collision(result)
            actors = {
                name: self.resolver.resolve(raw)
                for name, raw in result.actor_refs.items()
            }

        try:
            with store_errors(result.couch_id):
                outcome = self._write(result, actors)
        except ConstraintViolation:
            if not any(value is not None for value in actors.values()):
                raise
            # A user may vanish between resolution and commit; keep the document
            logger.warning(
                'Write failed with resolved actors; retrying without attribution',
                extra={'event': 'sync_actor_cleared', 'doc_id': result.couch_id, 'doc_type': result.doc_type}
            )
            with store_errors(result.couch_id):
                outcome = self._write(result, {name: None for name in actors})

        if outcome.result == WriteOutcome.STALE:
            metrics.sync_conflicts_rejected_total.labels(doc_type=result.doc_type).inc()
            log_document_skipped(
                result.couch_id,
                reason='older_than_stored',
                doc_type=result.doc_type,
                result='stale',
                couch_rev=result.record.get('couch_rev'),
            )
        else:
            log_document_applied(
                result.model.__name__,
                result.couch_id,
                outcome.result,
                couch_rev=result.record.get('couch_rev'),
            )
        return outcome

    def _check_collision(self, result):
        for model in MIRRORED_MODELS:
            if model is result.model:
                continue
            if model.objects.filter(couch_id=result.couch_id).exists():
                raise ExternalIdCollision(result.couch_id, model._meta.db_table)

    def _write(self, result, actors):
        model = result.model
        with transaction.atomic():
            existing = model.objects.select_for_update().filter(couch_id=result.couch_id).first()

            if not should_apply(existing, result):
                return WriteOutcome(WriteOutcome.STALE, existing)

            values = dict(result.record)
            values.update({f'{name}_id': user_id for name, user_id in actors.items()})
            values['synced_at'] = timezone.now()

            if existing is None:
                values.update(result.create_only)
                instance = model.objects.create(couch_id=result.couch_id, **values)
                return WriteOutcome(WriteOutcome.CREATED, instance)

            # Business time never regresses to unknown
            if values.get('couch_updated_at') is None:
                values.pop('couch_updated_at', None)

            self._report_drift(existing, result)

            for name, value in values.items():
                setattr(existing, name, value)
            existing.save()
            return WriteOutcome(WriteOutcome.UPDATED, existing)

    def _report_drift(self, existing, result):
        """Log create-only columns whose stored value differs from the document."""
        for name, incoming in result.create_only.items():
            if incoming is None or name.endswith('_updated_at'):
                continue
            stored = getattr(existing, name)
            if stored != incoming:
                logger.info(
                    'Document value differs from state owned by the server',
                    extra={
                        'event': 'sync_state_drift',
                        'doc_id': result.couch_id,
                        'doc_type': result.doc_type,
                        'column': name,
                        'stored': stored,
                        'incoming': incoming,
                    }
                )

    def tombstone(self, doc_id, rev=None):
        """
        Mark the row mirrored from `doc_id` deleted, in whichever table it lives.

        Returns:
            WriteOutcome (tombstoned, or missing when no row has that id)
        """
        with store_errors(doc_id), transaction.atomic():
            for model in MIRRORED_MODELS:
                instance = model.objects.select_for_update().filter(couch_id=doc_id).first()
                if instance is None:
                    continue

                instance.mark_deleted(timezone.now())
                if rev:
                    instance.couch_rev = rev
                if isinstance(instance, Patient):
                    instance.is_active = False
                instance.synced_at = timezone.now()
                instance.save()

                log_document_applied(model.__name__, doc_id, WriteOutcome.TOMBSTONED, couch_rev=rev)
                return WriteOutcome(WriteOutcome.TOMBSTONED, instance)

        logger.info(
            'Deletion for a document that was never mirrored',
            extra={'event': 'sync_tombstone_missing', 'doc_id': doc_id}
        )
        return WriteOutcome(WriteOutcome.MISSING)
