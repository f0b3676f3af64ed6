"""
Structured JSON logging and the security event logger.

Lead and customer records carry contact details, and record payloads end
up in log context when writes fail. Everything written through
JSONFormatter or SecurityLogger goes through PIIMasker first.
"""
import json
import logging
import re
import traceback
from django.utils import timezone
import sentry_sdk

MASK = '********'


class PIIMasker:
    """Mask contact details and credentials in log text and context."""

    EMAIL_PATTERN = re.compile(r'\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password)["\']?\s*[:=]\s*["\']?[^"\'\s,}]+',
        re.IGNORECASE
    )

    # Matched as substrings of lowercased keys
    SENSITIVE_FIELDS = (
        'email', 'phone', 'mobile', 'address',
        'password', 'secret', 'token', 'api_key',
    )

    @classmethod
    def mask_email(cls, text):
        if not isinstance(text, str):
            return text
        return cls.EMAIL_PATTERN.sub(
            lambda m: f"{m.group(1)[0]}{'*' * (len(m.group(1)) - 1)}@{m.group(2)}",
            text
        )

    @classmethod
    def mask_api_keys(cls, text):
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(lambda m: f"{m.group(1)}: {MASK}", text)

    @classmethod
    def mask_text(cls, text):
        return cls.mask_api_keys(cls.mask_email(text))

    @classmethod
    def is_sensitive(cls, key):
        key = str(key).lower()
        return any(field in key for field in cls.SENSITIVE_FIELDS)

    @classmethod
    def mask_value(cls, value):
        """Mask a JSON-like value of any depth."""
        if isinstance(value, dict):
            return cls.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [cls.mask_value(item) for item in value]
        if isinstance(value, str):
            return cls.mask_text(value)
        return value

    @classmethod
    def mask_dict(cls, data):
        if not isinstance(data, dict):
            return data
        masked = {}
        for key, value in data.items():
            if cls.is_sensitive(key) and value and not isinstance(value, (dict, list)):
                masked[key] = MASK
            else:
                masked[key] = cls.mask_value(value)
        return masked


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    request_id, tenant_id and principal_id are lifted to the top level so
    log search can join a denial to its request. Other `extra` fields are
    masked and kept when JSON-serializable, stringified otherwise.
    """

    # Attributes every LogRecord has; never copied as extra fields
    RESERVED = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
        'message', 'asctime', 'taskName', 'request_id', 'tenant_id', 'principal_id',
    }

    def format(self, record):
        log_data = {
            'timestamp': timezone.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in ('request_id', 'tenant_id', 'principal_id'):
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = str(value)

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            log_data['exception'] = {
                'type': exc_type.__name__,
                'message': PIIMasker.mask_text(str(exc_value)),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(exc_type, exc_value, exc_tb)
                ],
            }

        for key, value in record.__dict__.items():
            if key in self.RESERVED or key.startswith('_'):
                continue
            value = PIIMasker.mask_value(value)
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = PIIMasker.mask_text(str(value))
            log_data[key] = value

        return json.dumps(log_data)


class SecurityLogger:
    """
    Access-control events, written to the 'security' logger.

    Levels are fixed per event type: a denial is an expected outcome
    (INFO), a write payload naming a foreign tenant is suspicious (ERROR),
    and a record crossing the tenant boundary is a bug (CRITICAL). The last
    two are also reported to Sentry.
    """

    SENTRY_LEVELS = {
        'suspicious_activity': 'error',
        'cross_tenant_violation': 'fatal',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        logger = logging.getLogger('security')
        log_data = PIIMasker.mask_dict({
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
            **context,
        })

        getattr(logger, level, logger.warning)(f"Security event: {event_type}", extra=log_data)

        sentry_level = SecurityLogger.SENTRY_LEVELS.get(event_type)
        if sentry_level:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level=sentry_level,
                extras=log_data
            )

    @staticmethod
    def log_permission_denied(principal_id, action, resource, reason, company_id=None, tenant_id=None):
        SecurityLogger.log_event(
            'permission_denied',
            level='info',
            principal_id=principal_id,
            action=str(action),
            resource=str(resource),
            reason=reason,
            company_id=company_id,
            tenant_id=tenant_id,
        )

    @staticmethod
    def log_cross_tenant_violation(
        principal_id,
        resource,
        expected_tenant_id,
        observed_tenant_id,
        operation: str,
        record_id=None,
        **additional_context
    ):
        """
        Log a record whose true tenant differs from the tenant the call
        was scoped to, on the way out of or into storage.
        """
        SecurityLogger.log_event(
            'cross_tenant_violation',
            level='critical',
            principal_id=principal_id,
            resource=str(resource),
            expected_tenant_id=expected_tenant_id,
            observed_tenant_id=observed_tenant_id,
            operation=operation,
            record_id=record_id,
            **additional_context
        )

    @staticmethod
    def log_suspicious_activity(activity_type: str, description: str, principal_id=None, tenant_id=None,
                                **additional_context):
        SecurityLogger.log_event(
            'suspicious_activity',
            level='error',
            activity_type=activity_type,
            description=description,
            principal_id=principal_id,
            tenant_id=tenant_id,
            **additional_context
        )
