"""
Security management API views.

Implements endpoints for:
- Protected identity integrity check and manual repair
- Audit trail of operations involving the protected identity
- System health snapshot
- Tenant-scoped audit trail browsing (list, detail, stats)

The protected identity endpoints require the ``system:admin`` scope; audit
browsing needs ``organizations:read`` and is limited to reachable
organizations.
"""
import logging

from django.shortcuts import get_object_or_404
from django.utils import timezone
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiExample
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasScopes, IsSystemAdministrator, requires_scopes
from apps.organizations.models import Organization, OrganizationMembership
from apps.rbac.roles import Scope
from apps.security.config import get_protected_identity
from apps.security.integrity import IntegrityChecker
from apps.security.models import AuditEvent, ProtectedIdentity
from apps.security.serializers import (
    AuditEventSerializer, AuditLogFilterSerializer, AuditStatsQuerySerializer, AuditStatsSerializer,
    AutoFixSerializer, IntegrityCheckSerializer, SystemHealthSerializer,
)
from apps.security.trail import AuditTrailService

logger = logging.getLogger(__name__)


class AuditLogPagination(LimitOffsetPagination):
    default_limit = 50
    max_limit = 200


@extend_schema_view(
    get=extend_schema(
        tags=['Security'],
        summary='Check protected identity integrity',
        description='''
Compare the protected identity with its expected configuration.

**Required scope:** `system:admin`

`status` is `ok`, `corrupted` (drifted fields, missing owner membership or
missing protection record) or `missing` (no account with the protected id).
Nothing is changed; use `POST /v1/security/auto-fix` to repair.
        ''',
        responses={200: IntegrityCheckSerializer},
        examples=[
            OpenApiExample(
                'Drifted role',
                value={
                    'status': 'corrupted',
                    'details': {
                        'actor_id': '9b1f4c2e-6a7d-4e3b-8c5f-2d1a0e9f7b64',
                        'drifted_fields': {'role': {'expected': 'system_admin', 'actual': 'manager'}},
                    },
                    'protection_record': True,
                    'master_organization': True,
                    'membership': True,
                    'overall_status': 'needs_attention',
                    'checked_at': '2025-01-01T00:00:00Z',
                },
                response_only=True
            )
        ]
    )
)
class IntegrityCheckView(APIView):
    """
    GET /v1/security/integrity-check
    """
    permission_classes = [IsSystemAdministrator]

    def get(self, request):
        protected = get_protected_identity()
        report = IntegrityChecker.check_integrity()

        data = {
            'status': report.status,
            'details': report.details,
            'protection_record': ProtectedIdentity.objects.filter(actor_id=protected.actor_id).exists(),
            'master_organization': Organization.objects.filter(
                pk=protected.master_organization_id,
                organization_level=Organization.LEVEL_MASTER,
            ).exists(),
            'membership': OrganizationMembership.objects.owners().filter(
                actor_id=protected.actor_id,
                organization_id=protected.master_organization_id,
            ).exists(),
            'overall_status': 'secure' if report.is_ok else 'needs_attention',
            'checked_at': timezone.now(),
        }
        return Response(IntegrityCheckSerializer(data).data)


@extend_schema_view(
    post=extend_schema(
        tags=['Security'],
        summary='Repair the protected identity',
        description='''
Run the idempotent repair of the protected identity.

**Required scope:** `system:admin`

Recreates a missing account or restores only the drifted fields, then
re-asserts the owner membership and the protection record. The run is
recorded in the audit trail as `manual_security_fix`.

Returns 409 when another account already holds the protected email.
        ''',
        request=None,
        responses={200: AutoFixSerializer},
    )
)
class AutoFixView(APIView):
    """
    POST /v1/security/auto-fix
    """
    permission_classes = [IsSystemAdministrator]

    def post(self, request):
        triggered_by = str(request.actor.id)
        result = IntegrityChecker.auto_fix(triggered_by=triggered_by, request=request)

        logger.info(
            f"Manual protected identity fix requested: {result.action}",
            extra={'actor_id': triggered_by, 'fix_action': result.action}
        )
        return Response(AutoFixSerializer({
            'action': result.action,
            'details': result.details,
            'triggered_by': triggered_by,
        }).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Security'],
        summary='Audit trail of the protected identity',
        description='''
List audit events where the protected identity is the caller or the target,
newest first. Paginated with `limit`/`offset`.

**Required scope:** `system:admin`

`recent_blocked_attempts` counts blocked events of the last 24 hours.
        ''',
        responses={200: AuditEventSerializer(many=True)},
    )
)
class AuditLogsView(APIView):
    """
    GET /v1/security/audit-logs
    """
    permission_classes = [IsSystemAdministrator]

    def get(self, request):
        protected = get_protected_identity()
        events = AuditEvent.objects.involving(protected.actor_id).order_by('-created_at', '-id')

        paginator = AuditLogPagination()
        page = paginator.paginate_queryset(events, request, view=self)
        response = paginator.get_paginated_response(AuditEventSerializer(page, many=True).data)
        response.data['recent_blocked_attempts'] = events.blocked().recent(hours=24).count()
        return response


@extend_schema_view(
    get=extend_schema(
        tags=['Security'],
        summary='System health snapshot',
        description='''
Report system administrators, orphan accounts, organizations without an
owner, accounts whose capability flags disagree with their role, the
protected identity status and pending audit dead letters.

**Required scope:** `system:admin`
        ''',
        responses={200: SystemHealthSerializer},
    )
)
class SystemHealthView(APIView):
    """
    GET /v1/security/system-health
    """
    permission_classes = [IsSystemAdministrator]

    def get(self, request):
        return Response(SystemHealthSerializer(IntegrityChecker.system_health()).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Audit'],
        summary='Browse the audit trail',
        description='''
List audit events newest first. Paginated with `limit`/`offset`.

**Required scope:** `organizations:read`

System administrators see every event. Organization admins see only events
recorded against the organizations they reach; asking for another
`organization_id` is refused with `out_of_tenant`.

Filters: `start_date`, `end_date` (inclusive, `YYYY-MM-DD`), `action_type`,
`target_type`, `user_id`, `organization_id`, `search` (action or target id).
        ''',
        parameters=[AuditLogFilterSerializer],
        responses={200: AuditEventSerializer(many=True)},
    )
)
@requires_scopes(Scope.ORGANIZATIONS_READ)
class AuditTrailListView(APIView):
    """
    GET /v1/security/audit/logs
    """
    permission_classes = [HasScopes]

    def get(self, request):
        filters = AuditLogFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)

        events = AuditTrailService.filter_events(
            request.actor,
            AuditTrailService.visible_events(request.actor),
            filters.validated_data,
            request=request,
        )

        paginator = AuditLogPagination()
        page = paginator.paginate_queryset(events, request, view=self)
        return paginator.get_paginated_response(AuditEventSerializer(page, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Audit'],
        summary='Get audit event',
        description='''
Retrieve one audit event. Events outside the caller's organizations answer
404, as if they did not exist.

**Required scope:** `organizations:read`
        ''',
        responses={200: AuditEventSerializer},
    )
)
@requires_scopes(Scope.ORGANIZATIONS_READ)
class AuditTrailDetailView(APIView):
    """
    GET /v1/security/audit/logs/{event_id}
    """
    permission_classes = [HasScopes]

    def get(self, request, event_id):
        event = get_object_or_404(AuditTrailService.visible_events(request.actor), pk=event_id)
        return Response(AuditEventSerializer(event).data)


@extend_schema_view(
    get=extend_schema(
        tags=['Audit'],
        summary='Audit trail statistics',
        description='''
Aggregates over the last `days` days (default 30, at most 365) of the
events the caller can see: totals, counts by action and target type, the
ten most active actors, daily activity and blocked attempts
(`security_alerts`).

**Required scope:** `organizations:read`
        ''',
        parameters=[AuditStatsQuerySerializer],
        responses={200: AuditStatsSerializer},
    )
)
@requires_scopes(Scope.ORGANIZATIONS_READ)
class AuditTrailStatsView(APIView):
    """
    GET /v1/security/audit/stats
    """
    permission_classes = [HasScopes]

    def get(self, request):
        query = AuditStatsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        stats = AuditTrailService.stats(
            AuditTrailService.visible_events(request.actor),
            days=query.validated_data['days'],
        )
        return Response(AuditStatsSerializer(stats).data)
