"""
Sync URLs - Operational status.
"""
from django.urls import path

from .views import SyncStatusView

urlpatterns = [
    path('status/', SyncStatusView.as_view(), name='sync-status'),
]
