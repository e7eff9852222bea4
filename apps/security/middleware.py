"""
Protected identity guard middleware.
"""
import logging
from django.db import DatabaseError
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import InspectaException
from apps.security.guard import guard

logger = logging.getLogger(__name__)


class ProtectedIdentityGuardMiddleware(MiddlewareMixin):
    """
    Run the protected identity guard before any view.

    Hooked on ``process_view`` so the URL kwargs (``actor_id``, ``user_id``,
    ``id``) naming the target account are available. Must sit after
    ActorContextMiddleware.
    """

    def process_view(self, request, view_func, view_args, view_kwargs):
        try:
            return guard(request, view_kwargs)
        except DatabaseError:
            # Fail closed: the request does not reach the view.
            logger.error(
                "Protected identity guard failed",
                extra={
                    'request_id': getattr(request, 'request_id', None),
                    'path': request.path,
                    'method': request.method,
                },
                exc_info=True
            )
            return JsonResponse(
                {
                    'error': 'internal_error',
                    'code': 'internal_error',
                    'message': InspectaException.default_message,
                    'request_id': getattr(request, 'request_id', None),
                },
                status=500
            )
