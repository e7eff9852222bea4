"""
DRF permission classes and decorators for RBAC scope enforcement.

This module provides:
- HasScopes: DRF permission class that enforces scope requirements
- IsSystemAdministrator: shortcut for endpoints that need the universal scope
- @requires_scopes: Decorator to declare required scopes on views

Every denial is written to the audit trail before the 403 is raised.
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

from apps.core.exceptions import ForbiddenInsufficientScope, Unauthorized
from apps.security.audit import AuditLogWriter

logger = logging.getLogger(__name__)

UNIVERSAL_SCOPE = 'system:admin'

# URL kwargs that name the resource a request acts on.
TARGET_URL_KWARGS = ('actor_id', 'user_id', 'pk', 'id')


def _actor_scopes(request):
    return {str(scope) for scope in getattr(request, 'scopes', frozenset())}


def record_scope_denial(request, view, required_scopes, missing_scopes):
    """
    Log and audit a request refused for missing scopes.

    The audit event is written synchronously with
    ``blocked_reason='insufficient_scope'``.
    """
    actor = request.actor
    view_kwargs = getattr(view, 'kwargs', None) or {}
    target = next(
        (view_kwargs[key] for key in TARGET_URL_KWARGS if view_kwargs.get(key) is not None),
        None
    )

    logger.warning(
        f"Permission denied: actor {actor.id} missing scopes: {sorted(missing_scopes)}",
        extra={
            'actor_id': str(actor.id),
            'required_scopes': sorted(required_scopes),
            'missing_scopes': sorted(missing_scopes),
            'view': view.__class__.__name__,
            'method': request.method,
            'path': request.path,
        }
    )
    AuditLogWriter.record(
        actor, target,
        f"blocked_{request.method.lower()}_scope_check",
        old_value={'path': request.path, 'method': request.method},
        blocked=True,
        blocked_reason=ForbiddenInsufficientScope.code,
        metadata={
            'view': view.__class__.__name__,
            'required_scopes': sorted(required_scopes),
            'missing_scopes': sorted(missing_scopes),
        },
        organization_id=getattr(actor, 'organization_id', None),
        request=request,
    )


class HasScopes(BasePermission):
    """
    DRF permission class that enforces scope requirements on API endpoints.

    Scopes come from the actor's role (set on the request by
    ActorContextMiddleware). A view lists what it needs in
    ``required_scopes``; every listed scope must be present.
    ``system:admin`` satisfies any requirement.

    Tenant checks are not done here: views that act on a concrete resource
    call ``AccessDecisionService.enforce()`` with its organization.

    Usage in views:
        class MyView(APIView):
            permission_classes = [HasScopes]
            required_scopes = ['users:read']
    """

    def has_permission(self, request, view):
        """
        Check if request has all required scopes for the view.

        Raises:
            Unauthorized: no actor was resolved for the request
            ForbiddenInsufficientScope: a required scope is missing
        """
        if getattr(request, 'actor', None) is None:
            raise Unauthorized()

        required_scopes = getattr(view, 'required_scopes', None)
        if not required_scopes:
            return True

        if isinstance(required_scopes, str):
            required_scopes = {required_scopes}
        else:
            required_scopes = {str(scope) for scope in required_scopes}

        actor_scopes = _actor_scopes(request)
        if UNIVERSAL_SCOPE in actor_scopes:
            return True

        missing_scopes = required_scopes - actor_scopes
        if missing_scopes:
            record_scope_denial(request, view, required_scopes, missing_scopes)
            raise ForbiddenInsufficientScope()

        return True


class IsSystemAdministrator(HasScopes):
    """Only actors holding the universal ``system:admin`` scope."""

    def has_permission(self, request, view):
        if getattr(request, 'actor', None) is None:
            raise Unauthorized()

        if UNIVERSAL_SCOPE not in _actor_scopes(request):
            record_scope_denial(request, view, {UNIVERSAL_SCOPE}, {UNIVERSAL_SCOPE})
            raise ForbiddenInsufficientScope()
        return True


def requires_scopes(*scopes):
    """
    Decorator to declare required scopes on view classes or methods.

    Usage:
        @requires_scopes('users:read')
        class PendingActorsView(APIView):
            permission_classes = [HasScopes]

    Or on individual methods:
        class ActorDetailView(APIView):
            permission_classes = [HasScopes]

            @requires_scopes('users:write')
            def patch(self, request, actor_id):
                pass
    """
    scope_names = {str(scope) for scope in scopes}

    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_scopes = scope_names
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            self.required_scopes = scope_names
            # Method-level requirements are checked here since DRF runs
            # permission classes before dispatching to the handler.
            HasScopes().has_permission(request, self)
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_scopes = scope_names
        return wrapped

    return decorator
