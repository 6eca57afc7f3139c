"""
Sync views - operational status of the CouchDB mirror.
"""
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.authz.permissions import IsAdmin
from apps.sync.cursor import CursorStore
from apps.sync.serializers import SyncCursorSerializer
from apps.sync.transformers import registered_types


class SyncStatusView(APIView):
    """
    GET /api/v1/sync/status/

    Cursor position, per-document counters and the last cycle outcome.
    Staff / Admin only.
    """
    permission_classes = [IsAdmin]

    def get(self, request):
        cursor = CursorStore().get()
        data = SyncCursorSerializer(cursor).data
        data['document_types'] = registered_types()
        return Response(data)
