"""
Structured logging for Seva ERP.

JSONFormatter emits one JSON object per record with PII masked, and
SecurityLogger records authorization and abuse events on the `security`
logger, forwarding the critical ones to Sentry.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.

    Beneficiary and donor records carry phone numbers, emails and
    identity document numbers; none of them may reach log storage in clear.
    """

    PHONE_PATTERN = re.compile(r'\+?\d{10,15}')
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|otp)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    AADHAAR_PATTERN = re.compile(r'\b\d{4}[\s-]?\d{4}[\s-]?\d{4}\b')

    SENSITIVE_FIELDS = {
        'phone', 'mobile', 'email',
        'password', 'otp', 'pin',
        'api_key', 'access_token', 'refresh_token',
        'secret', 'aadhaar', 'pan_number', 'bank_account', 'ifsc',
    }

    @classmethod
    def mask_phone(cls, text):
        """Keep the first three characters of a phone number."""
        if not isinstance(text, str):
            return text
        return cls.PHONE_PATTERN.sub(lambda m: m.group(0)[:3] + '*' * (len(m.group(0)) - 3), text)

    @classmethod
    def mask_email(cls, text):
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_identity_numbers(cls, text):
        """Mask 12-digit identity numbers, keeping the last four digits."""
        if not isinstance(text, str):
            return text
        return cls.AADHAAR_PATTERN.sub(lambda m: '*' * (len(m.group(0)) - 4) + m.group(0)[-4:], text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.mask_identity_numbers(text)
        text = cls.mask_phone(text)
        text = cls.mask_email(text)
        text = cls.mask_secrets(text)
        return text

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in cls.SENSITIVE_FIELDS):
                if value and not isinstance(value, (dict, list)):
                    masked[key] = '********'
                else:
                    masked[key] = value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


# LogRecord attributes that are not copied as extra fields
_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'request_id', 'principal_id', 'task_id', 'task_name',
})


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.

    request_id, principal_id and Celery task fields are promoted to top-level
    keys; every other extra field is copied after masking.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for promoted in ('request_id', 'principal_id', 'task_id', 'task_name'):
            if hasattr(record, promoted):
                log_data[promoted] = str(getattr(record, promoted))

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                masked_value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                masked_value = PIIMasker.mask_text(value)
            else:
                masked_value = value
            try:
                json.dumps(masked_value)
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging.

    Every event goes to the `security` logger with structured data. Events in
    CRITICAL_EVENTS are also sent to Sentry: they mean the authorization
    layer itself is broken (catalog inconsistent with stored data, assignment
    store down), not that somebody was merely refused.
    """

    CRITICAL_EVENTS = {
        'authorization_configuration_error',
        'assignment_store_unavailable',
        'four_eyes_violation',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g. 'permission_denied')
            level: Log level ('debug', 'info', 'warning', 'error', 'critical')
            **context: Additional context (principal_id, ip_address, ...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_permission_denied(principal_id: str, role: str, permissions, reason: str):
        SecurityLogger.log_event(
            'permission_denied',
            level='info',
            principal_id=principal_id,
            role=role,
            permissions=list(permissions),
            reason=reason,
        )

    @staticmethod
    def log_resource_access_denied(principal_id: str, role: str, resource: dict, reason: str):
        SecurityLogger.log_event(
            'resource_access_denied',
            level='info',
            principal_id=principal_id,
            role=role,
            resource=resource,
            reason=reason,
        )

    @staticmethod
    def log_configuration_error(error: Exception, principal_id: str = None, role: str = None):
        """
        Log a role catalog inconsistency found while deciding a request.

        The request is denied; the event alerts through Sentry because every
        principal holding the offending role is locked out until it is fixed.
        """
        SecurityLogger.log_event(
            'authorization_configuration_error',
            level='error',
            error_type=error.__class__.__name__,
            error=str(error),
            principal_id=principal_id,
            role=role,
        )

    @staticmethod
    def log_store_unavailable(error: Exception, principal_id: str = None):
        SecurityLogger.log_event(
            'assignment_store_unavailable',
            level='error',
            error_type=error.__class__.__name__,
            error=str(error),
            principal_id=principal_id,
        )

    @staticmethod
    def log_attempt_limit_exceeded(operation: str, ip_address: str, retry_after: int, identity: str = None):
        """
        Log an identity that ran out of attempts for an operation.

        Args:
            operation: Limited operation (e.g. 'otp_login')
            ip_address: Client IP address
            retry_after: Seconds until the window reopens
            identity: Phone or email used in the attempt, masked in output
        """
        SecurityLogger.log_event(
            'attempt_limit_exceeded',
            level='warning',
            operation=operation,
            ip_address=ip_address,
            retry_after=retry_after,
            identity=identity,
        )

    @staticmethod
    def log_role_assignment_rejected(actor_id: str, principal_id: str, role: str, reason: str):
        SecurityLogger.log_event(
            'role_assignment_rejected',
            level='warning',
            actor_id=actor_id,
            principal_id=principal_id,
            role=role,
            reason=reason,
        )

    @staticmethod
    def log_four_eyes_violation(actor_id: str, assignment_id: str, role: str):
        """Log an attempt to approve an assignment by the person who granted it."""
        SecurityLogger.log_event(
            'four_eyes_violation',
            level='error',
            actor_id=actor_id,
            assignment_id=assignment_id,
            role=role,
        )
