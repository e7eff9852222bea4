"""
Exception taxonomy and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)

# Scope and tenant denials share this message so callers cannot tell
# which check failed.
GENERIC_FORBIDDEN_MESSAGE = 'You do not have permission to perform this action.'


class InspectaException(Exception):
    """Base exception for Inspecta-specific errors."""

    status_code = 500
    error = 'internal_error'
    code = 'internal_error'
    default_message = 'An unexpected error occurred'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def as_payload(self):
        """Structured, stable body for HTTP responses."""
        payload = {
            'error': self.error,
            'code': self.code,
            'message': self.message,
        }
        payload.update(self.details)
        return payload


class Unauthorized(InspectaException):
    """Raised when no actor can be resolved for the request."""
    status_code = 401
    error = 'unauthorized'
    code = 'unauthorized'
    default_message = 'Authentication is required to access this resource.'


class Forbidden(InspectaException):
    """Base for every 403 raised by the authorization core."""
    status_code = 403
    error = 'forbidden'
    code = 'forbidden'
    default_message = GENERIC_FORBIDDEN_MESSAGE


class ForbiddenInsufficientScope(Forbidden):
    code = 'insufficient_scope'


class ForbiddenOutOfTenant(Forbidden):
    code = 'out_of_tenant'


class ForbiddenProtectedResource(Forbidden):
    code = 'SISTEMA_PROTEGIDO'
    default_message = (
        'ACCESS DENIED: this system identity is permanently protected against '
        'modification. The attempt has been recorded.'
    )

    def __init__(self, message=None, details=None):
        details = {'protected_user': True, 'system_security': True, **(details or {})}
        super().__init__(message, details)


class ForbiddenPrivilegeEscalation(Forbidden):
    code = 'PRIVILEGIO_RESTRITO'
    default_message = 'Only the principal administrator can grant system privileges.'

    def __init__(self, message=None, details=None):
        details = {'protected_user': True, 'system_security': True, **(details or {})}
        super().__init__(message, details)


class InvalidApprovalTransition(InspectaException):
    """Raised when an approval status change leaves a terminal state."""
    status_code = 409
    error = 'conflict'
    code = 'invalid_approval_transition'
    default_message = 'This approval transition is not allowed.'


class OrganizationCycleError(InspectaException):
    """Raised when a parent assignment would create a hierarchy cycle."""
    status_code = 400
    error = 'validation_error'
    code = 'organization_cycle'
    default_message = 'This parent assignment would create a cycle in the organization hierarchy.'


class IntegrityMissing(InspectaException):
    """The protected identity row does not exist. Sys-admin endpoints only."""
    status_code = 409
    error = 'conflict'
    code = 'integrity_missing'


class IntegrityCorrupted(InspectaException):
    """The protected identity drifted from its expected configuration. Sys-admin endpoints only."""
    status_code = 409
    error = 'conflict'
    code = 'integrity_corrupted'


class AuditWriteFailure(InspectaException):
    """An audit event could not be persisted. Logged, never surfaced."""
    code = 'audit_write_failure'


class AuditImmutableError(InspectaException):
    """Raised when code tries to update or delete an audit event."""
    code = 'audit_immutable'
    default_message = 'Audit events are append-only.'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, InspectaException):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'code': exc.code,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=exc.status_code >= 500
        )
        payload = exc.as_payload()
        if exc.status_code >= 500:
            payload['message'] = InspectaException.default_message
        payload['request_id'] = request_id
        return Response(payload, status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'error': 'internal_error',
                'code': 'internal_error',
                'message': InspectaException.default_message,
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
