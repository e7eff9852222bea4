"""
Organization hierarchy resolution.

Answers "which organizations can this actor act on?" and keeps the parent
links acyclic.
"""
import logging

from apps.core.exceptions import OrganizationCycleError
from apps.rbac.roles import Role

logger = logging.getLogger(__name__)


def _normalize_org_id(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ReachableOrganizations:
    """
    Set of organization ids an actor may act on.

    ``ReachableOrganizations.everything()`` matches every id, including
    resources with no organization.
    """

    __slots__ = ('_ids', '_universal')

    def __init__(self, ids=(), universal=False):
        self._universal = universal
        self._ids = frozenset(
            org_id for org_id in (_normalize_org_id(value) for value in ids)
            if org_id is not None
        )

    @classmethod
    def everything(cls):
        return cls(universal=True)

    @classmethod
    def nothing(cls):
        return cls()

    @property
    def is_universal(self):
        return self._universal

    @property
    def ids(self):
        """Explicit ids; empty for the universal set."""
        return self._ids

    def __contains__(self, organization_id):
        if self._universal:
            return True
        org_id = _normalize_org_id(organization_id)
        return org_id is not None and org_id in self._ids

    def __eq__(self, other):
        if not isinstance(other, ReachableOrganizations):
            return NotImplemented
        return self._universal == other._universal and self._ids == other._ids

    def __hash__(self):
        return hash((self._universal, self._ids))

    def __repr__(self):
        if self._universal:
            return 'ReachableOrganizations(everything)'
        return f'ReachableOrganizations({sorted(self._ids)})'

    def filter(self, queryset, field='organization_id'):
        """Restrict a queryset to reachable organizations."""
        if self._universal:
            return queryset
        if not self._ids:
            return queryset.none()
        return queryset.filter(**{f'{field}__in': self._ids})


class OrganizationHierarchyService:
    """
    Resolves organization reachability for actors.
    """

    @classmethod
    def reachable_organizations(cls, actor):
        """
        Compute the organizations an actor may act on.

        - System administrators reach everything.
        - Organization admins with a managed organization reach it and its
          direct subsidiaries (one level down, one query).
        - Everyone else reaches their own organization, or nothing when
          they have none.

        Args:
            actor: Actor instance (anything with role, organization_id and
                managed_organization_id attributes)

        Returns:
            ReachableOrganizations
        """
        from apps.organizations.models import Organization

        role = Role.parse(actor.role)

        if role == Role.SYSTEM_ADMIN:
            return ReachableOrganizations.everything()

        managed_id = getattr(actor, 'managed_organization_id', None)
        if role == Role.ORG_ADMIN and managed_id is not None:
            children = Organization.objects.children_of(managed_id).values_list('id', flat=True)
            return ReachableOrganizations([managed_id, *children])

        if actor.organization_id is None:
            return ReachableOrganizations.nothing()

        return ReachableOrganizations([actor.organization_id])


def reachable_organizations(actor):
    return OrganizationHierarchyService.reachable_organizations(actor)


def queryset_filter(queryset, actor, field='organization_id'):
    """
    Scope a queryset to the organizations the actor can reach.

    Usage:
        inspections = queryset_filter(Inspection.objects.all(), request.actor)
    """
    return reachable_organizations(actor).filter(queryset, field=field)


def validate_parent(organization, parent_id):
    """
    Refuse parent assignments that would make the hierarchy cyclic.

    Walks up from the proposed parent; reaching ``organization`` (or any
    organization twice) means the assignment closes a loop.

    Raises:
        OrganizationCycleError
    """
    from apps.organizations.models import Organization

    parent_id = _normalize_org_id(parent_id)
    if parent_id is None:
        return

    own_id = organization.pk
    visited = set()
    current_id = parent_id

    while current_id is not None:
        if own_id is not None and current_id == own_id:
            logger.warning(
                "Rejected organization parent assignment: cycle",
                extra={'organization_id': own_id, 'parent_organization_id': parent_id}
            )
            raise OrganizationCycleError(details={
                'organization_id': own_id,
                'parent_organization_id': parent_id,
            })
        if current_id in visited:
            # Existing loop above the proposed parent.
            raise OrganizationCycleError(details={
                'organization_id': own_id,
                'parent_organization_id': parent_id,
            })
        visited.add(current_id)
        current_id = (
            Organization.objects.filter(pk=current_id)
            .values_list('parent_organization_id', flat=True)
            .first()
        )
