"""
Sync models: sync_cursor

The cursor is the only durable state of the sync engine: the CouchDB
`last_seq` it will resume from, plus cumulative counters read by the
status endpoint and `couchdb_sync --status`.
"""
from django.db import models


class SyncCursor(models.Model):
    """
    Named checkpoint into the CouchDB change feed.

    - name: unique cursor name (SYNC_CURSOR_NAME)
    - value: opaque CouchDB sequence, '0' when never run
    - documents_applied/skipped/errored: cumulative per-document outcomes
    - cycles_completed/failed: cumulative cycle outcomes
    - last_cycle_at, last_error
    """
    name = models.CharField(max_length=100, unique=True)
    value = models.TextField(default='0')

    documents_applied = models.PositiveBigIntegerField(default=0)
    documents_skipped = models.PositiveBigIntegerField(default=0)
    documents_errored = models.PositiveBigIntegerField(default=0)
    cycles_completed = models.PositiveBigIntegerField(default=0)
    cycles_failed = models.PositiveBigIntegerField(default=0)

    last_cycle_at = models.DateTimeField(blank=True, null=True)
    last_error = models.TextField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sync_cursor'
        verbose_name = 'Sync Cursor'
        verbose_name_plural = 'Sync Cursors'

    def __str__(self):
        return f"{self.name} @ {self.value}"
