"""
Tests for observability layer.

Validates that metrics, logs, and events are emitted correctly
without logging PHI/PII.
"""
import json
import logging

import pytest
from unittest.mock import Mock, patch
from django.db import DatabaseError

from apps.core.observability.correlation import (
    RequestCorrelationMiddleware,
    clear_request_context,
    get_request_id,
    sync_context,
)
from apps.core.observability.logging import (
    CorrelationFilter,
    SanitizedJSONFormatter,
    sanitize_dict,
)
from apps.core.observability.metrics import metrics
from apps.core.observability.events import (
    log_domain_event,
    log_document_skipped,
    log_workflow_transition,
)
from apps.sync.exceptions import ChangeSourceError


@pytest.mark.django_db
class TestRequestCorrelation:
    """Test request correlation middleware."""

    def test_generates_request_id_if_missing(self):
        """Middleware generates request ID if not in headers."""
        middleware = RequestCorrelationMiddleware(lambda r: Mock(status_code=200))
        request = Mock(META={}, path='/api/test', method='GET')
        request.user = Mock(is_authenticated=False)

        middleware.process_request(request)

        assert request.request_id
        assert get_request_id() == request.request_id
        clear_request_context()

    def test_propagates_existing_request_id(self):
        """Middleware uses existing request ID from headers."""
        middleware = RequestCorrelationMiddleware(lambda r: Mock(status_code=200))
        request = Mock(META={'HTTP_X_REQUEST_ID': 'test-request-123'}, path='/api/test', method='GET')
        request.user = Mock(is_authenticated=False)

        middleware.process_request(request)

        assert request.request_id == 'test-request-123'
        clear_request_context()

    def test_adds_request_id_to_response_headers(self):
        """Middleware adds X-Request-ID to response."""
        middleware = RequestCorrelationMiddleware(lambda r: Mock(status_code=200))
        request = Mock(META={}, path='/api/test', method='GET', request_id='test-123', trace_id=None)
        request.user = Mock(is_authenticated=False)
        del request.start_time
        response = {}

        result = middleware.process_response(request, response)

        assert result.get('X-Request-ID') == 'test-123'

    def test_response_carries_request_id(self, client):
        response = client.get('/healthz', HTTP_X_REQUEST_ID='abc-123')
        assert response['X-Request-ID'] == 'abc-123'


class TestSyncContext:

    def test_binds_cycle_id(self):
        previous = get_request_id()
        with sync_context() as cycle_id:
            assert cycle_id.startswith('sync-')
            assert get_request_id() == cycle_id
        assert get_request_id() == previous

    def test_restores_previous_id(self):
        with sync_context('outer'):
            with sync_context('inner'):
                assert get_request_id() == 'inner'
            assert get_request_id() == 'outer'


class TestSanitization:
    """Test PHI/PII sanitization."""

    def test_sanitize_dict_redacts_sensitive_fields(self):
        """Clinical payload keys are redacted."""
        data = {
            'doc_id': 'session:s1',
            'chief_complaint': 'fever and cough',
            'notes': 'mother reports...',
            'phone': '+260971234567',
            'raw_document': {'_id': 'session:s1'},
        }

        sanitized = sanitize_dict(data)

        assert sanitized['doc_id'] == 'session:s1'
        assert sanitized['chief_complaint'] == '[REDACTED]'
        assert sanitized['notes'] == '[REDACTED]'
        assert sanitized['phone'] == '[REDACTED]'
        assert sanitized['raw_document'] == '[REDACTED]'

    def test_sanitize_dict_handles_nested_objects(self):
        data = {'metadata': {'answers': {'resp_rate': 52}, 'schema_id': 'peds'}, 'status': 'ok'}

        sanitized = sanitize_dict(data)

        assert sanitized['status'] == 'ok'
        assert sanitized['metadata']['schema_id'] == 'peds'
        assert sanitized['metadata']['answers'] == '[REDACTED]'

    def test_allowed_fields_not_redacted(self):
        data = {
            'doc_id': 'form:1',
            'doc_type': 'clinicalForm',
            'couch_rev': '3-abc',
            'from_state': 'NEW',
            'to_state': 'TRIAGED',
            'applied': 5,
        }
        assert sanitize_dict(data) == data

    def test_json_formatter_redacts_extra_fields(self):
        record = logging.LogRecord('apps.sync', logging.INFO, __file__, 1, 'Document skipped', None, None)
        record.event = 'sync_document_skipped'
        record.doc_id = 'patient:AB12'
        record.raw_document = {'patient': {'phone': '+260971234567'}}
        CorrelationFilter().filter(record)

        payload = json.loads(SanitizedJSONFormatter().format(record))

        assert payload['event'] == 'sync_document_skipped'
        assert payload['doc_id'] == 'patient:AB12'
        assert payload['raw_document'] == '[REDACTED]'
        assert '+260971234567' not in json.dumps(payload)


class TestMetricsEmission:
    """Test that metrics are defined with bounded labels."""

    def test_metrics_registry_has_all_metrics(self):
        for name in [
            'exceptions_total',
            'sync_documents_total',
            'sync_cycles_total',
            'sync_cycle_duration_seconds',
            'sync_conflicts_rejected_total',
            'sync_identity_unresolved_total',
            'sync_cursor_advances_total',
            'sync_pending_changes',
            'workflow_transitions_total',
        ]:
            assert hasattr(metrics, name), name

    def test_no_unbounded_labels(self):
        """Labels never carry document ids, user ids or patient identifiers."""
        forbidden = {'doc_id', 'couch_id', 'user_id', 'cpt', 'session_id'}
        for metric in [metrics.sync_documents_total, metrics.workflow_transitions_total, metrics.sync_cycles_total]:
            assert not forbidden & set(metric._labelnames)

    def test_document_counter_increments(self):
        counter = metrics.sync_documents_total.labels(doc_type='clinicalForm', result='created')
        before = counter._value.get()
        counter.inc()
        assert counter._value.get() == before + 1

    def test_track_duration_observes_failed_calls(self):
        histogram = Mock()

        @metrics.track_duration(histogram)
        def cycle():
            raise ChangeSourceError('refused')

        with pytest.raises(ChangeSourceError):
            cycle()

        histogram.observe.assert_called_once()
        assert histogram.observe.call_args[0][0] >= 0


class TestDomainEvents:
    """Test domain event logging."""

    @patch('apps.core.observability.events.logger')
    def test_log_domain_event_structure(self, mock_logger):
        log_domain_event(
            'sync_document_applied',
            entity_type='ClinicalSession',
            entity_id='session:s1',
            result='created',
            couch_rev='2-b'
        )

        mock_logger.info.assert_called_once()
        extra = mock_logger.info.call_args[1]['extra']
        assert extra['event'] == 'sync_document_applied'
        assert extra['entity_type'] == 'ClinicalSession'
        assert extra['entity_id'] == 'session:s1'
        assert extra['result'] == 'created'
        assert extra['couch_rev'] == '2-b'

    @patch('apps.core.observability.events.logger')
    def test_errored_document_logged_as_error(self, mock_logger):
        log_document_skipped('form:1', reason='missing required field', doc_type='clinicalForm', result='errored')
        mock_logger.error.assert_called_once()

    @patch('apps.core.observability.events.logger')
    def test_stale_document_logged_as_warning(self, mock_logger):
        log_document_skipped('form:1', reason='older_than_stored', result='stale', answers={'q': 1})
        mock_logger.warning.assert_called_once()
        extra = mock_logger.warning.call_args[1]['extra']
        assert extra['answers'] == '[REDACTED]'

    @patch('apps.core.observability.events.logger')
    def test_workflow_transition_event(self, mock_logger):
        session = Mock(couch_id='session:s1', pk=7)

        log_workflow_transition(session, 'TRIAGED', 'UNDER_TREATMENT', result='rejected')

        mock_logger.warning.assert_called_once()
        extra = mock_logger.warning.call_args[1]['extra']
        assert extra['event'] == 'workflow_transition'
        assert extra['session_id'] == '7'
        assert extra['from_state'] == 'TRIAGED'
        assert extra['to_state'] == 'UNDER_TREATMENT'


@pytest.mark.django_db
class TestHealthChecks:
    """Test health check endpoints."""

    def test_healthz_returns_200(self, client):
        response = client.get('/healthz')

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'ok'
        assert 'version' in data

    @patch('apps.sync.couchdb.CouchDbClient.database_exists', return_value=True)
    def test_readyz_ready(self, mock_exists, client):
        response = client.get('/readyz')

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'ready'
        assert data['checks'] == {'database': True, 'couchdb': True}

    @patch('apps.sync.couchdb.CouchDbClient.database_exists', return_value=True)
    @patch('apps.core.observability.health.connection')
    def test_readyz_fails_on_db_error(self, mock_connection, mock_exists, client):
        mock_connection.cursor.side_effect = DatabaseError('DB connection failed')

        response = client.get('/readyz')

        assert response.status_code == 503
        data = response.json()
        assert data['status'] == 'not_ready'
        assert data['checks']['database'] is False

    @patch('apps.sync.couchdb.CouchDbClient.database_exists', side_effect=ChangeSourceError('refused'))
    def test_readyz_fails_when_couchdb_unreachable(self, mock_exists, client):
        response = client.get('/readyz')

        assert response.status_code == 503
        assert response.json()['checks']['couchdb'] is False

    @patch('apps.sync.couchdb.CouchDbClient.database_exists', return_value=False)
    def test_readyz_fails_when_database_missing(self, mock_exists, client):
        assert client.get('/readyz').status_code == 503

    def test_metrics_endpoint(self, client):
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'sync_documents_total' in response.content
