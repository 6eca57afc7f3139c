"""
Clinical URLs - Sessions and workflow.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import ClinicalSessionViewSet, WorkflowConfigView

router = DefaultRouter()
router.register(r'sessions', ClinicalSessionViewSet, basename='clinical-session')

urlpatterns = [
    path('workflow/config/', WorkflowConfigView.as_view(), name='workflow-config'),
    path('', include(router.urls)),
]
