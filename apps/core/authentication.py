"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication


class MiddlewareAuthentication(BaseAuthentication):
    """
    DRF authentication class that uses the actor set by ActorContextMiddleware.

    The middleware validates the bearer token and resolves the actor; this
    class simply hands that actor to DRF as ``request.user``.
    """

    def authenticate(self, request):
        """
        Return the actor from the middleware if present.

        Returns:
            tuple: (actor, None) if an actor was resolved, None otherwise
        """
        # Get the underlying Django request (DRF wraps it)
        django_request = request._request

        actor = getattr(django_request, 'actor', None)
        if actor is not None and actor.is_authenticated:
            return (actor, None)

        return None

    def authenticate_header(self, request):
        return 'Bearer'
