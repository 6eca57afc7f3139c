"""
Durable cursor into the CouchDB change feed.

Only the sync engine advances the cursor. Each update locks the cursor
row so a second worker started by mistake cannot interleave writes.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.observability import metrics

from .models import SyncCursor

logger = logging.getLogger(__name__)

INITIAL_SEQUENCE = '0'


class CursorStore:
    """Reads and advances the named SyncCursor row."""

    def __init__(self, name=None):
        self.name = name or settings.SYNC_CURSOR_NAME

    def get(self):
        cursor, _ = SyncCursor.objects.get_or_create(
            name=self.name,
            defaults={'value': INITIAL_SEQUENCE},
        )
        return cursor

    def read(self):
        """Sequence to resume from ('0' when the worker never ran)."""
        return self.get().value

    def _locked(self):
        self.get()
        return SyncCursor.objects.select_for_update().get(name=self.name)

    def advance(self, value, applied=0, skipped=0, errored=0):
        """
        Persist a completed cycle: new position plus per-document counts.
        """
        with transaction.atomic():
            cursor = self._locked()
            previous = cursor.value
            cursor.value = str(value)
            cursor.documents_applied += applied
            cursor.documents_skipped += skipped
            cursor.documents_errored += errored
            cursor.cycles_completed += 1
            cursor.last_cycle_at = timezone.now()
            cursor.last_error = None
            cursor.save()

        if previous != cursor.value:
            metrics.sync_cursor_advances_total.inc()
            logger.debug(
                'Sync cursor advanced',
                extra={'event': 'sync_cursor_advanced', 'cursor': self.name, 'from_seq': previous, 'to_seq': cursor.value}
            )
        return cursor

    def record_failure(self, error):
        """Persist a failed cycle. The position is left untouched."""
        with transaction.atomic():
            cursor = self._locked()
            cursor.cycles_failed += 1
            cursor.last_cycle_at = timezone.now()
            cursor.last_error = str(error)[:2000]
            cursor.save()
        return cursor

    def reset(self):
        """Rewind to the start of the feed; the next cycle replays full history."""
        with transaction.atomic():
            cursor = self._locked()
            previous = cursor.value
            cursor.value = INITIAL_SEQUENCE
            cursor.save()

        logger.warning(
            'Sync cursor reset',
            extra={'event': 'sync_cursor_reset', 'cursor': self.name, 'from_seq': previous}
        )
        return cursor
