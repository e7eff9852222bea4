"""
Actor context middleware.

Resolves the authenticated actor from the bearer token and attaches the
actor, its scopes and its reachable organizations to the request.
"""
import logging
from datetime import timedelta

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import Unauthorized
from apps.core.middleware import set_current_actor_id
from apps.core.sentry_utils import set_actor_context
from apps.organizations.services import OrganizationHierarchyService
from apps.rbac.roles import get_scopes
from apps.rbac.services import AuthService

logger = logging.getLogger(__name__)


class ActorContextMiddleware(MiddlewareMixin):
    """
    Authenticate the request and inject actor context.

    This middleware:
    1. Extracts the ``Authorization: Bearer <token>`` header
    2. Validates the JWT and loads the active actor
    3. Attaches request.actor, request.scopes, request.reachable_organizations
    4. Answers 401 when a protected path has no valid actor

    Public endpoints (schema, health checks) bypass authentication.
    """

    # Paths that don't require authentication
    PUBLIC_PATHS = [
        '/schema',
        '/v1/health',
    ]

    # last_active_at is refreshed at most this often per actor
    ACTIVITY_TOUCH_INTERVAL = timedelta(minutes=5)

    def process_request(self, request):
        request.actor = None
        request.scopes = frozenset()
        request.reachable_organizations = None

        if self._is_public_path(request.path):
            return None

        token = self._extract_bearer_token(request)
        if not token:
            return self._unauthorized(request, 'missing_token')

        actor = AuthService.get_actor_from_jwt(token)
        if actor is None:
            return self._unauthorized(request, 'invalid_token')

        request.actor = actor
        request.scopes = get_scopes(actor.role)
        request.reachable_organizations = OrganizationHierarchyService.reachable_organizations(actor)

        set_current_actor_id(actor.id)
        set_actor_context(actor)
        actor.touch(min_interval=self.ACTIVITY_TOUCH_INTERVAL)

        logger.debug(
            f"Actor context set: {actor.id} ({actor.role}) with {len(request.scopes)} scopes",
            extra={'request_id': getattr(request, 'request_id', None)}
        )
        return None

    def _is_public_path(self, path):
        """Check if path is public and doesn't require authentication."""
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    def _extract_bearer_token(self, request):
        header = request.headers.get('Authorization', '')
        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer':
            return None
        return token.strip() or None

    def _unauthorized(self, request, reason):
        logger.info(
            f"Unauthenticated request rejected: {reason}",
            extra={
                'request_id': getattr(request, 'request_id', None),
                'path': request.path,
                'method': request.method,
            }
        )
        payload = Unauthorized().as_payload()
        payload['request_id'] = getattr(request, 'request_id', None)
        response = JsonResponse(payload, status=401)
        response['WWW-Authenticate'] = 'Bearer'
        return response
