"""
Clinical views - mirrored sessions and workflow transitions.
"""
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.authz.permissions import ClinicalWorkflowPermission
from apps.clinical import workflow
from apps.clinical.models import ClinicalSession
from apps.clinical.serializers import (
    ClinicalSessionDetailSerializer,
    ClinicalSessionListSerializer,
    StateTransitionSerializer,
    TransitionRequestSerializer,
)


class ClinicalSessionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for mirrored clinical sessions.

    Endpoints:
    - GET /api/v1/clinical/sessions/ - List sessions
    - GET /api/v1/clinical/sessions/{couch_id}/ - Session detail
    - POST /api/v1/clinical/sessions/{couch_id}/transition/ - Move workflow state
    - GET /api/v1/clinical/sessions/{couch_id}/workflow/ - State, options and history

    Query parameters:
    - ?workflow_state=REFERRED - Filter by workflow state
    - ?patient_cpt=AB12 - Filter by patient
    - ?include_deleted=true - Include sessions deleted at the source (default: false)

    Sessions are written by the sync engine; the API only reads them and
    moves their workflow state.
    """
    permission_classes = [ClinicalWorkflowPermission]
    lookup_field = 'couch_id'
    lookup_value_regex = '[^/]+'

    def get_queryset(self):
        queryset = ClinicalSession.objects.all()

        include_deleted = self.request.query_params.get('include_deleted', 'false').lower() == 'true'
        if not include_deleted:
            queryset = queryset.filter(is_deleted=False)

        workflow_state = self.request.query_params.get('workflow_state')
        if workflow_state:
            queryset = queryset.filter(workflow_state=workflow_state)

        patient_cpt = self.request.query_params.get('patient_cpt')
        if patient_cpt:
            queryset = queryset.filter(patient_cpt=patient_cpt)

        return queryset.order_by('-couch_updated_at', '-id')

    def get_serializer_class(self):
        if self.action == 'list':
            return ClinicalSessionListSerializer
        return ClinicalSessionDetailSerializer

    @action(detail=True, methods=['post'], url_path='transition')
    def transition(self, request, couch_id=None):
        """
        POST /api/v1/clinical/sessions/{couch_id}/transition/

        Request body:
        {
            "to_state": "IN_GP_REVIEW",
            "reason": "gp_accepted",       # Optional
            "metadata": {"notes": "..."}   # Optional
        }

        Returns:
            200: Transition recorded (session + transition record)
            400: Malformed request
            409: Transition not allowed from the current state
        """
        serializer = TransitionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = self.get_object()

        try:
            record = workflow.transition(
                session,
                serializer.validated_data['to_state'],
                actor=request.user,
                reason=serializer.validated_data.get('reason') or None,
                metadata=serializer.validated_data.get('metadata'),
            )
        except workflow.InvalidTransition as e:
            return Response(
                {
                    'error': str(e),
                    'current_state': e.current_state,
                    'requested_state': e.requested_state,
                    'allowed_transitions': e.allowed_transitions,
                },
                status=status.HTTP_409_CONFLICT
            )

        session.refresh_from_db()
        return Response(
            {
                'session': ClinicalSessionDetailSerializer(session).data,
                'transition': StateTransitionSerializer(record).data,
            },
            status=status.HTTP_200_OK
        )

    @action(detail=True, methods=['get'], url_path='workflow')
    def workflow_status(self, request, couch_id=None):
        """GET /api/v1/clinical/sessions/{couch_id}/workflow/"""
        session = self.get_object()
        allowed = workflow.allowed_transitions_for(session.workflow_state)

        return Response({
            'couch_id': session.couch_id,
            'workflow_state': session.workflow_state,
            'workflow_state_updated_at': session.workflow_state_updated_at,
            'is_terminal': workflow.is_terminal(session.workflow_state),
            'allowed_transitions': allowed,
            'suggested_reasons': {
                to_state: workflow.suggested_reasons(session.workflow_state, to_state)
                for to_state in allowed
            },
            'history': StateTransitionSerializer(workflow.history(session), many=True).data,
        })


class WorkflowConfigView(APIView):
    """
    GET /api/v1/clinical/workflow/config/

    States, edges and suggested reasons of the session workflow.
    """
    permission_classes = [ClinicalWorkflowPermission]

    def get(self, request):
        return Response(workflow.get_config())
