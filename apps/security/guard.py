"""
Protected identity guard.

Runs ahead of every view for mutating requests. It never grants anything:
it either blocks the request (and records the attempt) or lets it through
to the normal authorization checks.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from django.http import JsonResponse
from django.utils import timezone

from apps.core.exceptions import ForbiddenProtectedResource, ForbiddenPrivilegeEscalation
from apps.core.security_logger import SecurityLogger
from apps.rbac.roles import SYSTEM_ADMIN_ROLE_VALUES
from apps.security.audit import AuditLogWriter, get_client_ip
from apps.security.config import get_protected_identity

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({'POST', 'PUT', 'PATCH', 'DELETE'})

# URL kwargs that name the account a request acts on.
TARGET_URL_KWARGS = ('actor_id', 'user_id', 'id')

# Body keys that name the account a request acts on.
TARGET_BODY_KEYS = ('id', 'user_id', 'actor_id')

# Never copied into the audit trail.
CREDENTIAL_KEYS = frozenset({'password', 'password_confirmation', 'token', 'secret'})


def parse_body(request):
    """Best-effort JSON/form body of a Django request; None when unparseable."""
    content_type = (request.content_type or '').lower()
    if content_type == 'application/json' or content_type.endswith('+json'):
        if not request.body:
            return None
        try:
            return json.loads(request.body)
        except (ValueError, UnicodeDecodeError):
            return None
    if request.POST:
        return request.POST.dict()
    return None


@dataclass
class GuardRequest:
    method: str
    path: str
    actor: Any = None
    target_id: Any = None
    body: Optional[dict] = None
    ip_address: Optional[str] = None
    user_agent: str = ''
    request: Any = field(default=None, repr=False)

    @classmethod
    def from_django(cls, request, view_kwargs=None):
        view_kwargs = view_kwargs or {}
        target_id = next(
            (view_kwargs[key] for key in TARGET_URL_KWARGS if view_kwargs.get(key) is not None),
            None
        )
        body = parse_body(request) if request.method.upper() in MUTATING_METHODS else None
        return cls(
            method=request.method.upper(),
            path=request.path,
            actor=getattr(request, 'actor', None),
            target_id=target_id,
            body=body if isinstance(body, dict) else None,
            ip_address=get_client_ip(request),
            user_agent=request.META.get('HTTP_USER_AGENT', ''),
            request=request,
        )

    @property
    def actor_ref(self):
        return str(self.actor.id) if self.actor is not None else 'anonymous'

    def sanitized_body(self):
        if not self.body:
            return self.body
        return {key: value for key, value in self.body.items() if key.lower() not in CREDENTIAL_KEYS}


@dataclass(frozen=True)
class GuardVerdict:
    """A blocked request: the response body and the audit label it was recorded under."""
    code: str
    action_type: str
    body: dict
    status_code: int = 403

    def as_response(self, request_id=None):
        payload = dict(self.body)
        if request_id:
            payload['request_id'] = request_id
        return JsonResponse(payload, status=self.status_code)


class ProtectedIdentityGuard:
    """
    Blocks mutations of the protected identity and grants of system
    administration by anyone but the protected identity itself.
    """

    @classmethod
    def targets_protected(cls, guard_request: GuardRequest, protected=None) -> bool:
        """True if the request names the protected identity by id or email."""
        protected = protected or get_protected_identity()
        if protected.matches_id(guard_request.target_id):
            return True

        body = guard_request.body or {}
        if any(protected.matches_id(body.get(key)) for key in TARGET_BODY_KEYS):
            return True
        return protected.matches_email(body.get('email'))

    @classmethod
    def requested_role(cls, guard_request: GuardRequest):
        role = (guard_request.body or {}).get('role')
        if isinstance(role, str):
            return role.strip().lower()
        return None

    @classmethod
    def check(cls, guard_request: GuardRequest) -> Optional[GuardVerdict]:
        """
        Inspect a request.

        Returns:
            GuardVerdict if the request must be blocked, None to let it through
        """
        if guard_request.method not in MUTATING_METHODS:
            return None

        protected = get_protected_identity()
        if protected.is_protected(guard_request.actor):
            return None

        if cls.targets_protected(guard_request, protected):
            return cls._block_protected_target(guard_request, protected)

        requested_role = cls.requested_role(guard_request)
        if requested_role in SYSTEM_ADMIN_ROLE_VALUES:
            return cls._block_privilege_escalation(guard_request, requested_role)

        return None

    @classmethod
    def _block_protected_target(cls, guard_request, protected):
        action_type = f"blocked_{guard_request.method.lower()}_attempt"

        AuditLogWriter.record(
            guard_request.actor_ref,
            str(protected.actor_id),
            action_type,
            old_value={'path': guard_request.path, 'method': guard_request.method},
            new_value=guard_request.sanitized_body(),
            blocked=True,
            blocked_reason=ForbiddenProtectedResource.code,
            organization_id=protected.master_organization_id,
            target_type='actor',
            request=guard_request.request,
        )
        SecurityLogger.log_protected_modification_blocked(
            guard_request.actor_ref, guard_request.method, guard_request.path, guard_request.ip_address
        )

        body = ForbiddenProtectedResource().as_payload()
        body['blocked_at'] = timezone.now().isoformat()
        return GuardVerdict(code=ForbiddenProtectedResource.code, action_type=action_type, body=body)

    @classmethod
    def _block_privilege_escalation(cls, guard_request, requested_role):
        action_type = 'blocked_privilege_escalation'
        body_target = next(
            (guard_request.body.get(key) for key in TARGET_BODY_KEYS if guard_request.body.get(key)),
            None
        )
        target = guard_request.target_id or body_target

        AuditLogWriter.record(
            guard_request.actor_ref,
            str(target) if target is not None else None,
            action_type,
            old_value={'path': guard_request.path, 'method': guard_request.method},
            new_value=guard_request.sanitized_body(),
            blocked=True,
            blocked_reason=ForbiddenPrivilegeEscalation.code,
            target_type='actor',
            request=guard_request.request,
        )
        SecurityLogger.log_privilege_escalation_blocked(
            guard_request.actor_ref, requested_role, guard_request.path, guard_request.ip_address
        )

        body = ForbiddenPrivilegeEscalation().as_payload()
        body['blocked_at'] = timezone.now().isoformat()
        return GuardVerdict(code=ForbiddenPrivilegeEscalation.code, action_type=action_type, body=body)


def guard(request, view_kwargs=None):
    """Run the guard on a Django request. Returns a 403 JsonResponse or None."""
    verdict = ProtectedIdentityGuard.check(GuardRequest.from_django(request, view_kwargs))
    if verdict is None:
        return None
    return verdict.as_response(getattr(request, 'request_id', None))
