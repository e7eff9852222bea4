"""
RBAC and Authentication services.

Implements:
- AccessDecisionService: allow/deny decisions with audit trail
- ActorService: profile edits and deactivation through the decision pipeline
- ApprovalService: pending -> approved | rejected workflow
- AuthService: JWT issue and validation
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional, Dict, Any

import jwt
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.exceptions import (
    ForbiddenInsufficientScope, ForbiddenOutOfTenant, ForbiddenProtectedResource,
    ForbiddenPrivilegeEscalation, InvalidApprovalTransition,
)
from apps.core.security_logger import SecurityLogger
from apps.core.sentry_utils import add_breadcrumb
from apps.organizations.services import OrganizationHierarchyService
from apps.rbac.models import Actor
from apps.rbac.roles import Scope, UNIVERSAL_SCOPE, SYSTEM_ADMIN_ROLE_VALUES, get_scopes
from apps.security.audit import AuditLogWriter
from apps.security.config import get_protected_identity

logger = logging.getLogger(__name__)


class Operation(models.TextChoices):
    READ = 'read', 'Read'
    CREATE = 'create', 'Create'
    UPDATE = 'update', 'Update'
    DELETE = 'delete', 'Delete'

    @property
    def is_mutating(self):
        return self is not Operation.READ

    @classmethod
    def from_http_method(cls, method):
        """Map an HTTP verb to an operation. Raises ValueError for unknown verbs."""
        mapping = {
            'GET': cls.READ,
            'HEAD': cls.READ,
            'OPTIONS': cls.READ,
            'POST': cls.CREATE,
            'PUT': cls.UPDATE,
            'PATCH': cls.UPDATE,
            'DELETE': cls.DELETE,
        }
        try:
            return mapping[method.upper()]
        except (KeyError, AttributeError):
            raise ValueError(f"Unsupported HTTP method: {method!r}")


class DecisionReason(models.TextChoices):
    PROTECTED_RESOURCE = 'protected_resource', 'Target is the protected identity'
    SYSTEM_SCOPE = 'system_scope', 'Actor holds the universal scope'
    SCOPE_IN_TENANT = 'scope_in_tenant', 'Scope granted inside a reachable organization'
    OWNERSHIP = 'ownership', 'Actor created or is assigned the resource'
    INSUFFICIENT_SCOPE = 'insufficient_scope', 'Required scope missing'
    OUT_OF_TENANT = 'out_of_tenant', 'Organization not reachable'


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    What an operation acts on.

    ``target_actor_id``/``target_email`` are set when the resource is (or
    points at) an actor account; they drive the protected identity check.
    """
    resource_type: str = 'resource'
    resource_id: Any = None
    organization_id: Optional[int] = None
    created_by: Any = None
    assigned_to: Any = None
    target_actor_id: Any = None
    target_email: Optional[str] = None

    @classmethod
    def for_actor(cls, actor):
        """Descriptor for an actor account as the resource."""
        return cls(
            resource_type='actor',
            resource_id=actor.id,
            organization_id=actor.organization_id,
            target_actor_id=actor.id,
            target_email=actor.email,
        )

    @property
    def target(self):
        return self.resource_id if self.resource_id is not None else self.target_actor_id


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: DecisionReason

    def __bool__(self):
        return self.allow


DENIAL_EXCEPTIONS = {
    DecisionReason.PROTECTED_RESOURCE: ForbiddenProtectedResource,
    DecisionReason.INSUFFICIENT_SCOPE: ForbiddenInsufficientScope,
    DecisionReason.OUT_OF_TENANT: ForbiddenOutOfTenant,
}


def _same_id(left, right):
    return left is not None and right is not None and str(left) == str(right)


class AccessDecisionService:
    """
    Decides whether an actor may perform an operation on a resource.
    """

    @classmethod
    def decide(cls, actor, resource: ResourceDescriptor, required_scope, operation: Operation) -> Decision:
        """
        Compute a decision without side effects.

        Rules, first match wins:
        1. Mutations of the protected identity by anyone else: deny.
        2. Universal scope: allow.
        3. Required scope held and organization reachable: allow.
        4. Actor created or is assigned the resource: allow.
        5. Deny, reporting whether the scope or the organization failed.
        """
        operation = Operation(operation)
        protected = get_protected_identity()

        targets_protected = (
            protected.matches_id(resource.target_actor_id)
            or protected.matches_email(resource.target_email)
        )
        if targets_protected and operation.is_mutating and not protected.is_protected(actor):
            return Decision(False, DecisionReason.PROTECTED_RESOURCE)

        scopes = get_scopes(actor.role)
        if UNIVERSAL_SCOPE in scopes:
            return Decision(True, DecisionReason.SYSTEM_SCOPE)

        has_required_scope = required_scope in scopes
        if has_required_scope:
            reachable = OrganizationHierarchyService.reachable_organizations(actor)
            if resource.organization_id in reachable:
                return Decision(True, DecisionReason.SCOPE_IN_TENANT)

        if _same_id(actor.id, resource.created_by) or _same_id(actor.id, resource.assigned_to):
            return Decision(True, DecisionReason.OWNERSHIP)

        if not has_required_scope:
            return Decision(False, DecisionReason.INSUFFICIENT_SCOPE)
        return Decision(False, DecisionReason.OUT_OF_TENANT)

    @classmethod
    def authorize(cls, actor, resource: ResourceDescriptor, required_scope, operation: Operation,
                  request=None, old_value=None, new_value=None, action_type=None) -> Decision:
        """
        Decide and record the outcome in the audit trail.

        Denials are written before returning. Allowed mutations are queued.
        Allowed reads are not recorded.

        Args:
            actor: Actor performing the operation
            resource: ResourceDescriptor for the target
            required_scope: Scope the operation needs (Scope or its string)
            operation: Operation (or its string value)
            request: Request, for IP/user agent/request id on the audit event
            old_value: State before the mutation, for the audit event
            new_value: Requested state, for the audit event
            action_type: Audit action label; defaults to '<resource_type>_<operation>'

        Returns:
            Decision
        """
        operation = Operation(operation)
        decision = cls.decide(actor, resource, required_scope, operation)

        if decision.allow and not operation.is_mutating:
            return decision

        metadata = {
            'resource_type': resource.resource_type,
            'organization_id': resource.organization_id,
            'required_scope': str(required_scope),
            'operation': operation.value,
            'reason': decision.reason.value,
        }

        if decision.allow:
            AuditLogWriter.record(
                actor, resource.target,
                action_type or f"{resource.resource_type}_{operation.value}",
                old_value=old_value,
                new_value=new_value,
                blocked=False,
                metadata=metadata,
                organization_id=resource.organization_id,
                target_type=resource.resource_type,
                request=request,
            )
            add_breadcrumb(
                category="authz",
                message=f"Allowed {operation.value} on {resource.resource_type}",
                data={'reason': decision.reason.value}
            )
            return decision

        SecurityLogger.log_access_denied(
            str(actor.id),
            decision.reason.value,
            required_scope=str(required_scope),
            resource_type=resource.resource_type,
            resource_id=str(resource.target) if resource.target is not None else None,
            organization_id=resource.organization_id,
        )
        AuditLogWriter.record(
            actor, resource.target,
            f"blocked_{action_type or f'{resource.resource_type}_{operation.value}'}",
            old_value=old_value,
            new_value=new_value,
            blocked=True,
            blocked_reason=decision.reason.value,
            metadata=metadata,
            organization_id=resource.organization_id,
            target_type=resource.resource_type,
            request=request,
        )
        return decision

    @classmethod
    def enforce(cls, actor, resource: ResourceDescriptor, required_scope, operation: Operation,
                request=None, **audit) -> Decision:
        """
        Like authorize(), but raise the matching 403 on deny.

        Raises:
            ForbiddenProtectedResource, ForbiddenInsufficientScope, ForbiddenOutOfTenant
        """
        decision = cls.authorize(actor, resource, required_scope, operation, request=request, **audit)
        if not decision.allow:
            raise DENIAL_EXCEPTIONS[decision.reason]()
        return decision


def authorize(actor, resource, required_scope, operation, request=None):
    return AccessDecisionService.authorize(actor, resource, required_scope, operation, request=request)


def _actor_snapshot(actor, fields):
    snapshot = {}
    for field in fields:
        if field in ('organization', 'managed_organization'):
            snapshot[field] = getattr(actor, f'{field}_id')
        else:
            snapshot[field] = getattr(actor, field)
    return snapshot


class ActorService:
    """
    Profile edits and deactivation of actor accounts.
    """

    EDITABLE_FIELDS = (
        'name', 'role', 'organization', 'managed_organization',
        'is_active', 'can_manage_users', 'can_create_organizations',
    )

    # Fields that widen what the account itself may do.
    REACH_FIELDS = ('managed_organization', 'can_manage_users', 'can_create_organizations')

    @classmethod
    def check_self_grant(cls, editor, target, changes, request=None):
        """
        Refuse edits of one's own reach unless the editor holds the
        universal scope.

        Raises:
            ForbiddenPrivilegeEscalation
        """
        if not _same_id(editor.id, target.id) or UNIVERSAL_SCOPE in get_scopes(editor.role):
            return

        requested = {
            key: getattr(changes[key], 'pk', changes[key])
            for key in cls.REACH_FIELDS if key in changes
        }
        current = _actor_snapshot(target, requested.keys())
        if requested == current:
            return

        SecurityLogger.log_privilege_escalation_blocked(
            str(editor.id), 'self_grant', getattr(request, 'path', ''),
        )
        AuditLogWriter.record(
            editor, target.id, 'blocked_self_grant',
            old_value=current,
            new_value=requested,
            blocked=True,
            blocked_reason='privilege_escalation',
            organization_id=target.organization_id,
            target_type='actor',
            request=request,
        )
        raise ForbiddenPrivilegeEscalation(
            'Only a system administrator can change your own managed organization or capabilities.'
        )

    @classmethod
    def check_role_grant(cls, editor, target, new_role, request=None):
        """
        Refuse to hand out system administration unless the editor is the
        protected identity.

        Raises:
            ForbiddenPrivilegeEscalation
        """
        if new_role not in SYSTEM_ADMIN_ROLE_VALUES or get_protected_identity().is_protected(editor):
            return

        SecurityLogger.log_privilege_escalation_blocked(
            str(editor.id), new_role, getattr(request, 'path', ''),
        )
        AuditLogWriter.record(
            editor, target.id, 'blocked_privilege_escalation',
            old_value={'role': target.role},
            new_value={'role': new_role},
            blocked=True,
            blocked_reason='privilege_escalation',
            organization_id=target.organization_id,
            target_type='actor',
            request=request,
        )
        raise ForbiddenPrivilegeEscalation()

    @classmethod
    def update_actor(cls, editor, target: Actor, changes: Dict[str, Any], request=None) -> Actor:
        """
        Apply validated changes to an actor.

        The edit needs ``users:write`` on the target's organization and, when
        the actor is moved or handed a managed organization, on the
        destination organization too. Only system administrators may change
        their own managed organization or capability flags.

        Args:
            editor: Actor performing the edit
            target: Actor being edited
            changes: Field -> value (organizations as Organization or None)
            request: Request for audit context

        Returns:
            Updated Actor
        """
        changes = {key: value for key, value in changes.items() if key in cls.EDITABLE_FIELDS}
        if 'role' in changes:
            cls.check_role_grant(editor, target, changes['role'], request=request)
        cls.check_self_grant(editor, target, changes, request=request)

        old_value = _actor_snapshot(target, changes.keys())
        new_value = {
            key: getattr(value, 'pk', value) if key in ('organization', 'managed_organization') else value
            for key, value in changes.items()
        }

        AccessDecisionService.enforce(
            editor, ResourceDescriptor.for_actor(target), Scope.USERS_WRITE, Operation.UPDATE,
            request=request, old_value=old_value, new_value=new_value, action_type='actor_update',
        )

        destinations = (
            ('organization', 'actor_transfer'),
            ('managed_organization', 'actor_manage_assign'),
        )
        for field, action_type in destinations:
            destination = changes.get(field)
            if destination is None or destination.pk == getattr(target, f'{field}_id'):
                continue
            AccessDecisionService.enforce(
                editor,
                ResourceDescriptor(resource_type='organization', resource_id=destination.pk,
                                   organization_id=destination.pk),
                Scope.USERS_WRITE, Operation.UPDATE,
                request=request, action_type=action_type,
            )

        for key, value in changes.items():
            setattr(target, key, value)
        target.save(update_fields=[*changes.keys(), 'updated_at'])

        logger.info(
            f"Actor {target.id} updated by {editor.id}",
            extra={'actor_id': str(editor.id), 'target_id': str(target.id), 'fields': sorted(changes)}
        )
        return target

    @classmethod
    def deactivate_actor(cls, editor, target: Actor, request=None) -> Actor:
        """
        Soft-delete an actor account (accounts are never physically removed).

        Needs ``users:delete`` on the target's organization.
        """
        AccessDecisionService.enforce(
            editor, ResourceDescriptor.for_actor(target), Scope.USERS_DELETE, Operation.DELETE,
            request=request,
            old_value={'is_active': target.is_active},
            new_value={'is_active': False},
            action_type='actor_deactivate',
        )

        target.is_active = False
        target.save(update_fields=['is_active', 'updated_at'])

        logger.info(
            f"Actor {target.id} deactivated by {editor.id}",
            extra={'actor_id': str(editor.id), 'target_id': str(target.id)}
        )
        return target


class ApprovalService:
    """
    Actor approval workflow: pending -> approved | rejected.

    Both outcomes are terminal. Deciding on an account needs ``users:write``
    on the account's organization.
    """

    @classmethod
    def pending_for(cls, actor):
        """Pending accounts in the organizations the actor can reach."""
        from apps.organizations.services import queryset_filter
        return queryset_filter(Actor.objects.pending_approval(), actor)

    @classmethod
    def approve(cls, approver, target: Actor, request=None) -> Actor:
        return cls._transition(approver, target, Actor.APPROVAL_APPROVED, request=request)

    @classmethod
    def reject(cls, approver, target: Actor, reason: str = '', request=None) -> Actor:
        return cls._transition(approver, target, Actor.APPROVAL_REJECTED, reason=reason, request=request)

    @classmethod
    def _transition(cls, approver, target: Actor, new_status: str, reason: str = '', request=None) -> Actor:
        """
        Move a pending account to a terminal state.

        The status change is a conditional UPDATE, so two concurrent
        decisions on the same account cannot both succeed.

        Raises:
            ForbiddenProtectedResource: target is the protected identity
            ForbiddenInsufficientScope / ForbiddenOutOfTenant
            InvalidApprovalTransition: account is not pending
        """
        action_type = 'actor_approve' if new_status == Actor.APPROVAL_APPROVED else 'actor_reject'
        AccessDecisionService.enforce(
            approver, ResourceDescriptor.for_actor(target), Scope.USERS_WRITE, Operation.UPDATE,
            request=request,
            old_value={'approval_status': target.approval_status},
            new_value={'approval_status': new_status, 'rejection_reason': reason or None},
            action_type=action_type,
        )

        now = timezone.now()
        updates = {
            'approval_status': new_status,
            'approved_by_id': approver.id,
            'approved_at': now,
            'updated_at': now,
        }
        if new_status == Actor.APPROVAL_REJECTED:
            updates['rejection_reason'] = reason or ''

        updated = Actor.objects.filter(
            pk=target.pk, approval_status=Actor.APPROVAL_PENDING
        ).update(**updates)

        if not updated:
            current = Actor.objects.filter(pk=target.pk).values_list('approval_status', flat=True).first()
            raise InvalidApprovalTransition(details={
                'current_status': current,
                'requested_status': new_status,
            })

        target.refresh_from_db()
        logger.info(
            f"Actor {target.id} {new_status} by {approver.id}",
            extra={'actor_id': str(approver.id), 'target_id': str(target.id)}
        )
        return target


class AuthService:
    """
    Service for authentication operations: JWT issue and validation.
    """

    @classmethod
    def generate_jwt(cls, actor: Actor) -> str:
        """
        Generate JWT token for an actor.

        Args:
            actor: Actor instance

        Returns:
            JWT token string
        """
        now = datetime.now(dt_timezone.utc)
        payload = {
            'actor_id': str(actor.id),
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_actor_from_jwt(cls, token: str) -> Optional[Actor]:
        """
        Extract and return the active actor from a JWT token.

        Returns:
            Actor instance or None if the token is invalid or the actor is
            unknown or inactive
        """
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        actor_id = payload.get('actor_id')
        if not actor_id:
            return None

        try:
            return Actor.objects.select_related('organization').get(id=actor_id, is_active=True)
        except (Actor.DoesNotExist, ValidationError, ValueError, TypeError):
            return None
