"""
Tenant-scoped browsing of the audit trail.

System administrators see every event. Organization admins see the events
recorded against the organizations they reach; events with no organization
stay visible to system administrators only.
"""
import logging
import uuid
from datetime import timedelta

from django.db.models import Count
from django.db.models.functions import TruncDate
from django.utils import timezone

from apps.organizations.services import reachable_organizations
from apps.rbac.models import Actor
from apps.rbac.roles import Scope
from apps.rbac.services import AccessDecisionService, Operation, ResourceDescriptor
from apps.security.models import AuditEvent

logger = logging.getLogger(__name__)

TOP_ACTORS_LIMIT = 10


class AuditTrailService:
    """
    Queries behind the audit log list, detail and stats endpoints.
    """

    @classmethod
    def visible_events(cls, actor):
        """Audit events inside the organizations the actor reaches, newest first."""
        events = AuditEvent.objects.order_by('-created_at', '-id')
        return reachable_organizations(actor).filter(events, field='organization_id')

    @classmethod
    def filter_events(cls, actor, events, filters, request=None):
        """
        Apply validated list filters.

        Args:
            actor: Actor browsing the trail
            events: Queryset from visible_events()
            filters: dict with any of start_date, end_date, action_type,
                target_type, user_id, organization_id, search
            request: Request for audit context

        Raises:
            ForbiddenOutOfTenant: organization_id is outside the actor's reach
        """
        organization_id = filters.get('organization_id')
        if organization_id is not None:
            AccessDecisionService.enforce(
                actor,
                ResourceDescriptor(resource_type='audit_log', organization_id=organization_id),
                Scope.ORGANIZATIONS_READ, Operation.READ,
                request=request, action_type='audit_log_browse',
            )
            events = events.filter(organization_id=organization_id)

        if filters.get('start_date'):
            events = events.filter(created_at__date__gte=filters['start_date'])
        if filters.get('end_date'):
            events = events.filter(created_at__date__lte=filters['end_date'])
        if filters.get('action_type'):
            events = events.filter(action_type=filters['action_type'])
        if filters.get('target_type'):
            events = events.filter(target_type=filters['target_type'])
        if filters.get('user_id'):
            events = events.filter(actor_id=str(filters['user_id']))
        if filters.get('search'):
            events = events.search(filters['search'])
        return events

    @classmethod
    def stats(cls, events, days=30):
        """
        Aggregate the trail over the last ``days`` days.

        Returns:
            dict with totals, counts by action and target type, the most
            active actors, per-day activity and the blocked attempt count
        """
        start = timezone.now() - timedelta(days=days)
        window = events.filter(created_at__gte=start).order_by()

        by_action_type = list(
            window.values('action_type').annotate(count=Count('id')).order_by('-count', 'action_type')
        )
        by_target_type = list(
            window.exclude(target_type='')
            .values('target_type').annotate(count=Count('id')).order_by('-count', 'target_type')
        )
        top_actors = list(
            window.values('actor_id').annotate(activity_count=Count('id'))
            .order_by('-activity_count', 'actor_id')[:TOP_ACTORS_LIMIT]
        )
        daily_activity = list(
            window.annotate(day=TruncDate('created_at'))
            .values('day').annotate(count=Count('id')).order_by('day')
        )

        cls._attach_actor_names(top_actors)

        return {
            'period': {'days': days, 'start_date': start},
            'total_events': window.count(),
            'by_action_type': by_action_type,
            'by_target_type': by_target_type,
            'top_actors': top_actors,
            'daily_activity': [{'date': row['day'], 'count': row['count']} for row in daily_activity],
            'security_alerts': window.filter(blocked=True).count(),
        }

    @classmethod
    def _attach_actor_names(cls, rows):
        # actor_id also holds 'system' and 'anonymous'
        ids = []
        for row in rows:
            try:
                ids.append(uuid.UUID(row['actor_id']))
            except ValueError:
                continue

        actors = {
            str(actor_id): (name, email)
            for actor_id, name, email in Actor.objects.filter(id__in=ids).values_list('id', 'name', 'email')
        }
        for row in rows:
            name, email = actors.get(row['actor_id'], (None, None))
            row['name'] = name
            row['email'] = email
