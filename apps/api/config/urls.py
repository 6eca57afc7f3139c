"""
URL configuration for HealthBridge project.
"""
from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from apps.core.observability.health import HealthzView, MetricsView, ReadyzView

urlpatterns = [
    # Health checks and metrics (no auth required)
    path('healthz', HealthzView.as_view(), name='healthz'),
    path('readyz', ReadyzView.as_view(), name='readyz'),
    path('metrics', MetricsView.as_view(), name='metrics'),

    # Admin
    path('admin/', admin.site.urls),

    # Private API (authentication required)
    path('api/', include('apps.core.urls')),  # Core API (auth)
    path('api/v1/clinical/', include('apps.clinical.urls')),  # Clinical API (sessions, workflow)
    path('api/v1/sync/', include('apps.sync.urls')),  # Sync operations (staff)

    # API Schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/schema/swagger-ui/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/schema/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]
