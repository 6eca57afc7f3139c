from django.contrib import admin
from .models import SyncCursor


@admin.register(SyncCursor)
class SyncCursorAdmin(admin.ModelAdmin):
    """The cursor is advanced by the sync engine; use `couchdb_sync --reset` to rewind."""
    list_display = ['name', 'value', 'cycles_completed', 'cycles_failed', 'documents_errored', 'last_cycle_at']
    readonly_fields = [
        'name', 'value', 'documents_applied', 'documents_skipped', 'documents_errored',
        'cycles_completed', 'cycles_failed', 'last_cycle_at', 'last_error', 'created_at', 'updated_at',
    ]

    def has_add_permission(self, request):
        return False
