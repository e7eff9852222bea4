"""
Audit log writer.

Blocked attempts are written before the response goes out. Everything else
is handed to the ``write_audit_event`` Celery task on the ``audit`` queue so
the request does not wait on the insert. A failed write is logged and never
changes the outcome of the request it describes.
"""
import json
import logging

from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import validate_ipv46_address
from django.db import DatabaseError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from kombu.exceptions import KombuError

from apps.core.exceptions import AuditWriteFailure
from apps.core.middleware import get_current_request_id, normalize_request_id
from apps.core.security_logger import SecurityLogger
from apps.security.models import AuditEvent, AuditDeadLetter

logger = logging.getLogger(__name__)


def _json_safe(value):
    """Round-trip through JSON so UUIDs, datetimes and Decimals survive the broker."""
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def _actor_ref(actor):
    if actor is None:
        return AuditEvent.ACTOR_ANONYMOUS
    if isinstance(actor, str):
        return actor
    return str(getattr(actor, 'id', actor))


def _valid_ip(value):
    if not value:
        return None
    try:
        validate_ipv46_address(value)
    except ValidationError:
        return None
    return value


def get_client_ip(request):
    """
    Extract client IP from request.

    The first ``X-Forwarded-For`` entry wins when it is a valid address;
    otherwise ``REMOTE_ADDR`` is used. Returns None when neither is valid.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = _valid_ip(x_forwarded_for.split(',')[0].strip())
        if ip:
            return ip
    return _valid_ip(request.META.get('REMOTE_ADDR'))


class AuditLogWriter:
    """
    Records AuditEvents synchronously or through the background queue.
    """

    @classmethod
    def build_payload(cls, actor, target, action_type, old_value=None, new_value=None,
                      blocked=False, blocked_reason='', metadata=None, request=None,
                      organization_id=None, target_type=''):
        """
        Flatten an audit event into a JSON-serializable dict.

        Args:
            actor: Actor instance, actor id string, or None for anonymous callers
            target: Target id (actor UUID, resource id) or None
            action_type: Action being recorded
            old_value: State before the operation
            new_value: Requested or resulting state
            blocked: Whether the operation was denied
            blocked_reason: Decision reason for denials
            metadata: Additional context
            request: Django/DRF request (for IP, user agent, request ID)
            organization_id: Organization the operation touched, for scoped browsing
            target_type: Kind of resource targeted ('actor', 'organization', ...)

        Returns:
            dict of AuditEvent field values
        """
        payload = {
            'actor_id': _actor_ref(actor),
            'target_id': '' if target is None else str(target),
            'target_type': target_type or '',
            'organization_id': organization_id,
            'action_type': action_type,
            'old_value': _json_safe(old_value),
            'new_value': _json_safe(new_value),
            'blocked': bool(blocked),
            'blocked_reason': blocked_reason or '',
            'metadata': _json_safe(metadata) or {},
            'ip_address': None,
            'user_agent': '',
            'request_id': get_current_request_id() or '',
            'created_at': timezone.now().isoformat(),
        }

        if request is not None:
            payload['ip_address'] = get_client_ip(request)
            payload['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            request_id = normalize_request_id(getattr(request, 'request_id', None))
            if request_id:
                payload['request_id'] = request_id

        return payload

    @classmethod
    def record(cls, actor, target, action_type, old_value=None, new_value=None,
               blocked=False, blocked_reason='', metadata=None, request=None, wait=None,
               organization_id=None, target_type=''):
        """
        Record an audit event.

        ``wait`` defaults to ``blocked``: denials are persisted before
        returning, other events are queued.

        Returns:
            AuditEvent when written synchronously, None when queued or when
            the write failed.
        """
        if wait is None:
            wait = blocked

        payload = cls.build_payload(
            actor, target, action_type,
            old_value=old_value,
            new_value=new_value,
            blocked=blocked,
            blocked_reason=blocked_reason,
            metadata=metadata,
            request=request,
            organization_id=organization_id,
            target_type=target_type,
        )

        if wait:
            return cls.write(payload)
        cls.dispatch(payload)
        return None

    @classmethod
    def persist(cls, payload):
        """
        Insert one AuditEvent from a payload.

        Raises:
            AuditWriteFailure
        """
        fields = dict(payload)
        created_at = fields.pop('created_at', None)
        if created_at:
            fields['created_at'] = parse_datetime(created_at) if isinstance(created_at, str) else created_at

        try:
            # Savepoint: a failed insert must not poison the caller's transaction.
            with transaction.atomic():
                return AuditEvent.objects.create(**fields)
        except (DatabaseError, ValueError, TypeError) as e:
            raise AuditWriteFailure(str(e), details={'action_type': payload.get('action_type')}) from e

    @classmethod
    def write(cls, payload):
        """Synchronous write. Failures are logged and swallowed."""
        try:
            return cls.persist(payload)
        except AuditWriteFailure as e:
            logger.error(
                f"Failed to write audit event: {str(e)}",
                extra={
                    'action_type': payload.get('action_type'),
                    'target_id': payload.get('target_id'),
                },
                exc_info=True
            )
            SecurityLogger.log_audit_write_failed(
                payload.get('action_type'), payload.get('target_id'), str(e)
            )
            cls.dead_letter(payload, e, attempts=1)
            return None

    @classmethod
    def dispatch(cls, payload):
        """
        Queue a payload for the background writer.

        Falls back to a synchronous write when the broker is unreachable or
        the bounded ``audit`` queue rejects the publish.
        """
        from apps.security.tasks import write_audit_event

        try:
            write_audit_event.delay(payload)
        except (KombuError, OSError) as e:
            logger.warning(
                f"Audit queue unavailable, writing synchronously: {str(e)}",
                extra={'action_type': payload.get('action_type')}
            )
            cls.write(payload)

    @classmethod
    def dead_letter(cls, payload, error, attempts, task_id=''):
        """
        Park a payload that could not be written.

        Returns:
            AuditDeadLetter or None if even that failed
        """
        try:
            with transaction.atomic():
                return AuditDeadLetter.objects.create(
                    payload=payload,
                    error=str(error)[:2000],
                    attempts=attempts,
                    task_id=task_id or '',
                )
        except DatabaseError as e:
            logger.error(
                f"Failed to dead-letter audit event: {str(e)}",
                extra={'action_type': payload.get('action_type')},
                exc_info=True
            )
            return None

    @classmethod
    def replay_dead_letters(cls, limit=None):
        """
        Retry dead-lettered payloads.

        Args:
            limit: Maximum number of dead letters to process

        Returns:
            dict: {'replayed': int, 'failed': int}
        """
        pending = AuditDeadLetter.objects.pending()
        if limit:
            pending = pending[:limit]

        replayed = 0
        failed = 0
        for letter in pending:
            try:
                cls.persist(letter.payload)
            except AuditWriteFailure as e:
                failed += 1
                letter.attempts += 1
                letter.error = str(e)[:2000]
                letter.save(update_fields=['attempts', 'error', 'updated_at'])
                logger.warning(
                    f"Dead-lettered audit event still failing: {str(e)}",
                    extra={'dead_letter_id': letter.id}
                )
                continue

            replayed += 1
            letter.replayed_at = timezone.now()
            letter.save(update_fields=['replayed_at', 'updated_at'])

        logger.info(
            f"Replayed {replayed} dead-lettered audit events ({failed} still failing)"
        )
        return {'replayed': replayed, 'failed': failed}
