"""
Security event logging.

Writes structured events to the ``security`` logger. The audit trail in the
database is the system of record; these events feed log aggregation and
Sentry alerting.
"""
import logging
from django.utils import timezone

from apps.core.logging import PIIMasker
from apps.core.sentry_utils import capture_message


class SecurityLogger:
    """
    Centralized security event logging.

    All security events are logged with:
    - Event type
    - Timestamp
    - Actor and target ids (if available)
    - IP address
    - Additional context

    Critical events are also sent to Sentry for real-time alerting.
    """

    # Define which event types are critical and should alert via Sentry
    CRITICAL_EVENTS = {
        'protected_identity_modification_blocked',
        'privilege_escalation_blocked',
        'integrity_drift_detected',
        'audit_write_failed',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'access_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (actor_id, ip_address, ...)

        Example:
            >>> SecurityLogger.log_event(
            ...     'access_denied',
            ...     actor_id='3f0c...',
            ...     reason='out_of_tenant'
            ... )
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
            capture_message(
                f"Critical security event: {event_type}",
                level='error',
                security_event=log_data
            )

    @staticmethod
    def log_protected_modification_blocked(actor_id: str, method: str, path: str, ip_address: str = None):
        """
        Log a blocked mutation against the protected identity.

        Args:
            actor_id: Caller id (or 'anonymous')
            method: HTTP method of the attempt
            path: Request path
            ip_address: IP address of the request
        """
        SecurityLogger.log_event(
            'protected_identity_modification_blocked',
            level='error',
            actor_id=actor_id,
            method=method,
            path=path,
            ip_address=ip_address
        )

    @staticmethod
    def log_privilege_escalation_blocked(actor_id: str, requested_role: str, path: str, ip_address: str = None):
        SecurityLogger.log_event(
            'privilege_escalation_blocked',
            level='error',
            actor_id=actor_id,
            requested_role=requested_role,
            path=path,
            ip_address=ip_address
        )

    @staticmethod
    def log_access_denied(actor_id: str, reason: str, required_scope: str = None,
                          resource_type: str = None, resource_id: str = None,
                          organization_id=None):
        """
        Log an authorization denial.

        Args:
            actor_id: Caller id
            reason: Decision reason ('insufficient_scope', 'out_of_tenant', ...)
            required_scope: Scope the operation needed
            resource_type: Kind of resource
            resource_id: Resource id
            organization_id: Organization owning the resource
        """
        SecurityLogger.log_event(
            'access_denied',
            level='warning',
            actor_id=actor_id,
            reason=reason,
            required_scope=required_scope,
            resource_type=resource_type,
            resource_id=resource_id,
            organization_id=organization_id
        )

    @staticmethod
    def log_integrity_drift(status: str, details: dict):
        SecurityLogger.log_event(
            'integrity_drift_detected',
            level='error',
            status=status,
            details=details
        )

    @staticmethod
    def log_audit_write_failed(action_type: str, target_id: str, error: str):
        """
        Log an audit event that could not be persisted.

        Args:
            action_type: Action of the lost event
            target_id: Target of the lost event
            error: Error text
        """
        SecurityLogger.log_event(
            'audit_write_failed',
            level='error',
            action_type=action_type,
            target_id=target_id,
            error=error
        )
