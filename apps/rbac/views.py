"""
RBAC REST API views.

Implements endpoints for:
- Actor profile reads, edits and deactivation
- Approval workflow (pending list, approve, reject)

Every endpoint runs after ProtectedIdentityGuardMiddleware, so mutations of
the protected identity never reach these handlers unless the caller is the
protected identity itself.
"""
import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiExample
from rest_framework import status
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasScopes, requires_scopes
from apps.rbac.models import Actor
from apps.rbac.roles import Scope
from apps.rbac.serializers import ActorSerializer, ActorUpdateSerializer, RejectActorSerializer
from apps.rbac.services import (
    AccessDecisionService, ActorService, ApprovalService, Operation, ResourceDescriptor,
)

logger = logging.getLogger(__name__)


@extend_schema_view(
    get=extend_schema(
        tags=['Users'],
        summary='Get actor',
        description='''
Retrieve one actor account.

**Required scope:** `users:read` in an organization the caller reaches.
        ''',
        responses={200: ActorSerializer},
    ),
    patch=extend_schema(
        tags=['Users'],
        summary='Update actor',
        description='''
Partially update an actor account.

**Required scope:** `users:write` on the actor's organization, and on the
destination organization when `organization_id` changes.

Granting `system_admin` is refused with `PRIVILEGIO_RESTRITO` unless the
caller is the protected identity. Edits of the protected identity are
refused with `SISTEMA_PROTEGIDO` before this handler runs.
        ''',
        request=ActorUpdateSerializer,
        responses={200: ActorSerializer},
        examples=[
            OpenApiExample(
                'Blocked escalation',
                value={
                    'error': 'forbidden',
                    'code': 'PRIVILEGIO_RESTRITO',
                    'message': 'Only the principal administrator can grant system privileges.',
                    'protected_user': True,
                    'system_security': True,
                    'request_id': '4f0c2d9e-1b7a-4c2e-9d3f-8a6b5c4d3e2f',
                },
                response_only=True,
                status_codes=['403'],
            )
        ]
    ),
    delete=extend_schema(
        tags=['Users'],
        summary='Deactivate actor',
        description='''
Deactivate an actor account. Accounts are never physically removed.

**Required scope:** `users:delete` on the actor's organization.
        ''',
        responses={204: None},
    ),
)
class ActorDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/users/{actor_id}
    """
    permission_classes = [HasScopes]

    def _get_actor(self, actor_id):
        return get_object_or_404(Actor.objects.select_related('organization'), pk=actor_id)

    @requires_scopes(Scope.USERS_READ)
    def get(self, request, actor_id):
        target = self._get_actor(actor_id)
        AccessDecisionService.enforce(
            request.actor, ResourceDescriptor.for_actor(target), Scope.USERS_READ, Operation.READ,
            request=request,
        )
        return Response(ActorSerializer(target).data)

    @requires_scopes(Scope.USERS_WRITE)
    def patch(self, request, actor_id):
        target = self._get_actor(actor_id)

        serializer = ActorUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        target = ActorService.update_actor(
            request.actor, target, serializer.validated_data, request=request
        )
        return Response(ActorSerializer(target).data)

    @requires_scopes(Scope.USERS_DELETE)
    def delete(self, request, actor_id):
        target = self._get_actor(actor_id)
        ActorService.deactivate_actor(request.actor, target, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['Users'],
        summary='List accounts awaiting approval',
        description='''
Pending accounts in the organizations the caller reaches, oldest first.
Paginated with `limit`/`offset`.

**Required scope:** `users:read`
        ''',
        responses={200: ActorSerializer(many=True)},
    )
)
@requires_scopes(Scope.USERS_READ)
class PendingActorsView(APIView):
    """
    GET /v1/users/pending
    """
    permission_classes = [HasScopes]

    def get(self, request):
        pending = ApprovalService.pending_for(request.actor).order_by('created_at')

        paginator = LimitOffsetPagination()
        page = paginator.paginate_queryset(pending, request, view=self)
        return paginator.get_paginated_response(ActorSerializer(page, many=True).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Users'],
        summary='Approve account',
        description='''
Approve a pending account. Approved and rejected are final: deciding on an
account that is not pending returns 409.

**Required scope:** `users:write` on the account's organization.
        ''',
        request=None,
        responses={200: ActorSerializer},
    )
)
@requires_scopes(Scope.USERS_WRITE)
class ActorApproveView(APIView):
    """
    POST /v1/users/{actor_id}/approve
    """
    permission_classes = [HasScopes]

    def post(self, request, actor_id):
        target = get_object_or_404(Actor, pk=actor_id)
        target = ApprovalService.approve(request.actor, target, request=request)
        return Response(ActorSerializer(target).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Users'],
        summary='Reject account',
        description='''
Reject a pending account with an optional reason. Rejecting an account
that is not pending returns 409.

**Required scope:** `users:write` on the account's organization.
        ''',
        request=RejectActorSerializer,
        responses={200: ActorSerializer},
    )
)
@requires_scopes(Scope.USERS_WRITE)
class ActorRejectView(APIView):
    """
    POST /v1/users/{actor_id}/reject
    """
    permission_classes = [HasScopes]

    def post(self, request, actor_id):
        serializer = RejectActorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        target = get_object_or_404(Actor, pk=actor_id)
        target = ApprovalService.reject(
            request.actor, target, reason=serializer.validated_data['reason'], request=request
        )
        return Response(ActorSerializer(target).data)
