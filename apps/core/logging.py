"""
Custom logging formatters and filters for structured JSON logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    # Patterns for sensitive data
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9_\-\.]+', re.IGNORECASE)
    JWT_PATTERN = re.compile(r'eyJ[a-zA-Z0-9_\-]+\.eyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    DB_URL_PATTERN = re.compile(r'://([^:/@\s]+):([^@\s]+)@')

    # Sensitive field names that should be masked
    SENSITIVE_FIELDS = {
        'email', 'email_address',
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask bearer tokens, JWTs, credentials and secrets in text."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer [REDACTED]', text)
        text = cls.JWT_PATTERN.sub('[REDACTED_JWT]', text)
        text = cls.SECRET_PATTERN.sub(r'\1: ********', text)
        text = cls.DB_URL_PATTERN.sub(r'://\1:[REDACTED]@', text)
        return text

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_email(cls.mask_secrets(text))

    @classmethod
    def mask_value(cls, value):
        if isinstance(value, dict):
            return cls.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [cls.mask_value(item) for item in value]
        if isinstance(value, str):
            return cls.mask_text(value)
        return value

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if str(key).lower() in cls.SENSITIVE_FIELDS and value and not isinstance(value, (dict, list)):
                masked[key] = '********'
            else:
                masked[key] = cls.mask_value(value)
        return masked


# Attributes every LogRecord carries; anything else came in through ``extra``.
RESERVED_RECORD_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info', 'taskName',
})


class SanitizingFilter(logging.Filter):
    """
    Scrub credentials and addresses from every record before any handler
    formats it, so plain-text handlers get the same treatment as JSON ones.
    """

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = PIIMasker.mask_text(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = PIIMasker.mask_dict(record.args)
            else:
                record.args = tuple(PIIMasker.mask_value(arg) for arg in record.args)

        for key, value in list(record.__dict__.items()):
            if key in RESERVED_RECORD_ATTRS or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS and value and not isinstance(value, (dict, list)):
                setattr(record, key, '********')
            elif isinstance(value, (dict, list, tuple, str)):
                setattr(record, key, PIIMasker.mask_value(value))
        return True


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and actor_id from extra fields if available.
    Automatically masks sensitive PII data.
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

        # Add exception info if present
        if record.exc_info and record.exc_info[0] is not None:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        # Add any extra fields (request_id, actor_id, task_id, event_type...)
        for key, value in record.__dict__.items():
            if key in RESERVED_RECORD_ATTRS or key.startswith('_'):
                continue
            masked_value = PIIMasker.mask_value(value)
            try:
                json.dumps(masked_value)  # Test if serializable
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)
