"""
Structured logging with PHI protection.

Synced clinical documents carry patient data; anything logged from the
sync engine or the workflow API goes through these helpers so that
clinical payload keys are redacted before they reach a log sink.
"""
import logging
import json
from datetime import datetime, timezone
from .correlation import get_request_id, get_trace_id, get_user_id, get_user_roles


# Keys whose values must never reach the logs (PHI/PII and credentials)
SENSITIVE_FIELDS = {
    'password',
    'token',
    'secret',
    'api_key',
    'authorization',
    'chief_complaint',
    'chiefcomplaint',
    'clinical_notes',
    'clinical_indication',
    'clinical_question',
    'notes',
    'answers',
    'prompt',
    'response',
    'safe_output',
    'phone',
    'email',
    'date_of_birth',
    'dateofbirth',
    'raw_document',
    'data',
}

# Attributes present on every LogRecord
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message', 'asctime',
}


def _is_sensitive(key):
    return str(key).lower() in SENSITIVE_FIELDS


class CorrelationFilter(logging.Filter):
    """
    Logging filter that injects correlation context into log records.
    """

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        record.trace_id = get_trace_id() or '-'
        record.user_id = get_user_id() or '-'
        record.user_roles = ','.join(get_user_roles()) or '-'
        return True


class SanitizedJSONFormatter(logging.Formatter):
    """
    JSON formatter that redacts sensitive fields.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', '-'),
            'trace_id': getattr(record, 'trace_id', '-'),
            'user_id': getattr(record, 'user_id', '-'),
            'user_roles': getattr(record, 'user_roles', '-'),
        }

        # Fields passed through extra={}
        for key, value in record.__dict__.items():
            if key in log_data or key.startswith('_') or key in _RESERVED_ATTRS:
                continue
            log_data[key] = '[REDACTED]' if _is_sensitive(key) else sanitize_value(value)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def sanitize_value(value):
    """Redact sensitive keys inside nested dicts and lists."""
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value


def sanitize_dict(data):
    """
    Return a copy of `data` with sensitive keys replaced by '[REDACTED]'.

    Non-dict input is returned unchanged.
    """
    if not isinstance(data, dict):
        return data

    return {
        key: '[REDACTED]' if _is_sensitive(key) else sanitize_value(value)
        for key, value in data.items()
    }


def get_sanitized_logger(name):
    """
    Get a logger with correlation filter applied.

    Usage:
        logger = get_sanitized_logger(__name__)
        logger.info('Cycle finished', extra={'event': 'sync_cycle_completed', 'applied': 3})
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())

    return logger
