"""
Prometheus metrics for the sync engine, workflow and HTTP layer.
"""
import time
from functools import wraps

from prometheus_client import Counter, Gauge, Histogram


class MetricsRegistry:
    """
    Central metrics registry for HealthBridge.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        self._setup_metrics()

    def _setup_metrics(self):

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.exceptions_total = Counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Sync Metrics
        # ===================================================================
        self.sync_documents_total = Counter(
            'sync_documents_total',
            'Documents processed from the CouchDB change feed',
            ['doc_type', 'result']  # result: created|updated|stale|tombstoned|skipped|errored
        )

        self.sync_cycles_total = Counter(
            'sync_cycles_total',
            'Sync cycles run',
            ['result']  # completed, failed
        )

        self.sync_cycle_duration_seconds = Histogram(
            'sync_cycle_duration_seconds',
            'Duration of one sync cycle (fetch + apply + cursor advance)',
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
        )

        self.sync_conflicts_rejected_total = Counter(
            'sync_conflicts_rejected_total',
            'Incoming documents rejected as older than the stored row',
            ['doc_type']
        )

        self.sync_identity_unresolved_total = Counter(
            'sync_identity_unresolved_total',
            'Actor references that could not be resolved to a user'
        )

        self.sync_cursor_advances_total = Counter(
            'sync_cursor_advances_total',
            'Times the sync cursor was advanced'
        )

        self.sync_pending_changes = Gauge(
            'sync_pending_changes',
            'Changes still pending on the feed after the last fetch'
        )

        # ===================================================================
        # Workflow Metrics
        # ===================================================================
        self.workflow_transitions_total = Counter(
            'workflow_transitions_total',
            'Clinical session workflow transitions',
            ['from_state', 'to_state', 'result']  # result: success|rejected
        )

    def track_duration(self, histogram):
        """Observe the wall time of each call in `histogram`, including failed calls."""
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                started = time.monotonic()
                try:
                    return func(*args, **kwargs)
                finally:
                    histogram.observe(time.monotonic() - started)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
