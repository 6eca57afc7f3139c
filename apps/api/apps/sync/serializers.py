"""
Sync serializers for cursor status.
"""
from rest_framework import serializers

from apps.sync.models import SyncCursor


class SyncCursorSerializer(serializers.ModelSerializer):
    """Cursor position, counters and last cycle outcome"""
    last_cycle_failed = serializers.SerializerMethodField()

    class Meta:
        model = SyncCursor
        fields = [
            'name',
            'value',
            'documents_applied',
            'documents_skipped',
            'documents_errored',
            'cycles_completed',
            'cycles_failed',
            'last_cycle_at',
            'last_cycle_failed',
            'last_error',
            'updated_at',
        ]
        read_only_fields = fields

    def get_last_cycle_failed(self, obj):
        return bool(obj.last_error)
