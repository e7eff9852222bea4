"""
Celery tasks for the audit trail and protected identity verification.
"""
import logging
from celery import shared_task
from django.conf import settings

from apps.core.exceptions import AuditWriteFailure
from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    base=LoggedTask,
    max_retries=getattr(settings, 'AUDIT_TASK_MAX_RETRIES', 3),
    acks_late=True,
)
def write_audit_event(self, payload):
    """
    Persist one audit event.

    Retries with exponential backoff; after the last retry the payload is
    parked in AuditDeadLetter instead of being dropped.

    Args:
        payload: dict built by AuditLogWriter.build_payload

    Returns:
        dict: Result with status and event id
    """
    from apps.security.audit import AuditLogWriter

    try:
        event = AuditLogWriter.persist(payload)
    except AuditWriteFailure as e:
        if self.request.retries >= self.max_retries:
            logger.error(
                f"Audit event write failed after {self.request.retries + 1} attempts: {str(e)}",
                extra={'action_type': payload.get('action_type')},
                exc_info=True
            )
            letter = AuditLogWriter.dead_letter(
                payload, e,
                attempts=self.request.retries + 1,
                task_id=self.request.id or '',
            )
            return {
                'status': 'dead_lettered',
                'dead_letter_id': letter.id if letter else None,
            }

        logger.warning(
            f"Audit event write failed, retrying: {str(e)}",
            extra={'action_type': payload.get('action_type')}
        )
        # Retry with exponential backoff
        raise self.retry(exc=e, countdown=2 ** self.request.retries)

    return {'status': 'written', 'event_id': event.id}


@shared_task(bind=True, base=LoggedTask)
def verify_protected_identity(self):
    """
    Periodic reconciliation of the protected identity.

    Runs the integrity check and repairs drift through auto-fix.

    Returns:
        dict: Check status and fix action
    """
    from apps.security.integrity import IntegrityChecker

    report = IntegrityChecker.check_integrity()
    if report.is_ok:
        return {'status': report.status, 'action': 'no_action_needed'}

    result = IntegrityChecker.auto_fix(triggered_by='system')
    logger.warning(
        f"Protected identity reconciled: {report.status} -> {result.action}",
        extra={'integrity_status': report.status, 'fix_action': result.action}
    )
    return {'status': report.status, 'action': result.action}


@shared_task(bind=True, base=LoggedTask)
def replay_audit_dead_letters(self, limit=None):
    """Retry dead-lettered audit payloads."""
    from apps.security.audit import AuditLogWriter
    return AuditLogWriter.replay_dead_letters(limit=limit)
