"""
Health check and metrics endpoints.

Provides /healthz, /readyz and /metrics for monitoring.
"""
import logging
from django.http import HttpResponse, JsonResponse
from django.views import View
from django.db import DatabaseError, connection
from django.conf import settings
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)


class HealthzView(View):
    """
    Basic health check endpoint.

    Returns 200 OK if application is running.
    Does not check dependencies.
    """

    def get(self, request):
        health_data = {
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }

        # Set by deployment
        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            health_data['commit'] = commit_hash

        return JsonResponse(health_data, status=200)


class ReadyzView(View):
    """
    Readiness check endpoint.

    Returns 200 OK when both stores the sync engine needs are reachable:
    the relational database and the CouchDB change source.
    """

    def get(self, request):
        checks = {
            'database': self._check_database(),
            'couchdb': self._check_couchdb(),
        }

        all_healthy = all(checks.values())

        response_data = {
            'status': 'ready' if all_healthy else 'not_ready',
            'checks': checks,
        }

        return JsonResponse(response_data, status=200 if all_healthy else 503)

    def _check_database(self):
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                return True
        except DatabaseError as e:
            logger.error(
                'Database health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'database',
                    'error': str(e)
                }
            )
            return False

    def _check_couchdb(self):
        from apps.sync.couchdb import CouchDbClient
        from apps.sync.exceptions import ChangeSourceError

        try:
            with CouchDbClient.from_settings() as client:
                return client.database_exists()
        except ChangeSourceError as e:
            logger.error(
                'CouchDB health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'couchdb',
                    'error': str(e)
                }
            )
            return False


class MetricsView(View):
    """Prometheus exposition of the default registry."""

    def get(self, request):
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
