"""
Protected identity integrity checks and idempotent repair.

``check_integrity`` compares the protected actor against its expected
configuration. ``auto_fix`` restores it with upserts (INSERT ... ON CONFLICT
DO UPDATE), so concurrent or repeated runs converge on the same rows.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.exceptions import IntegrityCorrupted
from apps.core.security_logger import SecurityLogger
from apps.organizations.models import Organization, OrganizationMembership
from apps.rbac.models import Actor
from apps.rbac.roles import Role
from apps.security.audit import AuditLogWriter
from apps.security.config import get_protected_identity
from apps.security.models import AuditDeadLetter, ProtectedIdentity

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_CORRUPTED = 'corrupted'
STATUS_MISSING = 'missing'

ACTION_CREATED = 'created'
ACTION_UPDATED = 'updated'
ACTION_NO_ACTION = 'no_action_needed'

PROTECTED_ROLES = [Role.SYSTEM_ADMIN.value]
PROTECTED_PERMISSIONS = ['can_manage_users', 'can_create_organizations']
PROTECTION_REASON = 'Founder account: permanent maximum protection'


def expected_actor_state(protected=None):
    """Field values the protected actor must always hold."""
    protected = protected or get_protected_identity()
    return {
        'role': Role.SYSTEM_ADMIN.value,
        'can_manage_users': True,
        'can_create_organizations': True,
        'is_active': True,
        'organization_id': protected.master_organization_id,
        'approval_status': Actor.APPROVAL_APPROVED,
    }


@dataclass
class IntegrityReport:
    status: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_ok(self):
        return self.status == STATUS_OK

    def as_dict(self):
        return {'status': self.status, 'details': self.details}


@dataclass
class AutoFixResult:
    action: str
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self):
        return {'action': self.action, 'details': self.details}


class IntegrityChecker:
    """
    Verifies and restores the protected identity.
    """

    @classmethod
    def check_integrity(cls) -> IntegrityReport:
        """
        Compare the protected actor with its expected configuration.

        Returns:
            IntegrityReport with status:
            - 'missing': no actor row with the protected id
            - 'corrupted': drifted fields, or membership/registration missing
            - 'ok': everything matches
        """
        protected = get_protected_identity()
        actor = Actor.objects.filter(pk=protected.actor_id).first()

        if actor is None:
            report = IntegrityReport(STATUS_MISSING, {
                'actor_id': str(protected.actor_id),
                'reason': 'actor_not_found',
            })
            SecurityLogger.log_integrity_drift(report.status, report.details)
            return report

        expected = expected_actor_state(protected)
        drifted = {
            name: {'expected': value, 'actual': getattr(actor, name)}
            for name, value in expected.items()
            if getattr(actor, name) != value
        }

        has_membership = OrganizationMembership.objects.filter(
            actor_id=actor.pk,
            organization_id=protected.master_organization_id,
            role=OrganizationMembership.ROLE_OWNER,
            is_active=True,
        ).exists()
        registration_ok = ProtectedIdentity.objects.filter(actor_id=actor.pk).exists()

        details = {'actor_id': str(actor.pk)}
        if drifted:
            details['drifted_fields'] = drifted
        if not has_membership:
            details['membership_missing'] = True
        if not registration_ok:
            details['registration_missing'] = True

        if drifted or not has_membership or not registration_ok:
            report = IntegrityReport(STATUS_CORRUPTED, details)
            SecurityLogger.log_integrity_drift(report.status, report.details)
            return report

        return IntegrityReport(STATUS_OK, details)

    @classmethod
    def auto_fix(cls, triggered_by='system', request=None) -> AutoFixResult:
        """
        Restore the protected identity.

        - missing: upsert the master organization, the actor, its owner
          membership and its protection registration
        - corrupted: update only the drifted fields, then re-assert the
          membership and registration
        - ok: no-op

        Args:
            triggered_by: 'system' for scheduled runs, or the id of the actor
                who asked for the fix
            request: Request for audit context

        Returns:
            AutoFixResult

        Raises:
            IntegrityCorrupted: another account already holds the protected
                email, so the actor row cannot be created
        """
        report = cls.check_integrity()
        if report.is_ok:
            return AutoFixResult(ACTION_NO_ACTION, report.details)

        protected = get_protected_identity()
        expected = expected_actor_state(protected)

        if report.status == STATUS_MISSING:
            holder = Actor.objects.by_email(protected.email)
            if holder is not None:
                logger.error(
                    "Protected identity auto-fix refused: email held by another account",
                    extra={'conflicting_actor_id': str(holder.id)}
                )
                raise IntegrityCorrupted(
                    'The protected identity could not be restored automatically.',
                    details={
                        'status': report.status,
                        'reason': 'conflicting_account',
                        'conflicting_actor_id': str(holder.id),
                    }
                )

        try:
            with transaction.atomic():
                cls._upsert_master_organization(protected)
                if report.status == STATUS_MISSING:
                    cls._upsert_actor(protected, expected)
                    action = ACTION_CREATED
                    fixed = sorted(expected)
                else:
                    fixed = cls._update_drifted_fields(protected, expected)
                    action = ACTION_UPDATED
                cls._upsert_membership(protected)
                cls._upsert_registration(protected, triggered_by)
        except IntegrityError as e:
            logger.error(
                f"Protected identity auto-fix failed: {str(e)}",
                extra={'integrity_status': report.status},
                exc_info=True
            )
            raise IntegrityCorrupted(
                'The protected identity could not be restored automatically.',
                details={'status': report.status, 'reason': 'conflicting_account'}
            ) from e

        details = {
            'previous_status': report.status,
            'fixed_fields': fixed,
            'actor_id': str(protected.actor_id),
        }
        action_type = 'auto_integrity_fix' if triggered_by == 'system' else 'manual_security_fix'
        AuditLogWriter.record(
            triggered_by,
            str(protected.actor_id),
            action_type,
            old_value=report.as_dict(),
            new_value={key: expected[key] for key in fixed if key in expected},
            blocked=False,
            metadata={'action': action},
            request=request,
            wait=True,
            organization_id=protected.master_organization_id,
            target_type='actor',
        )

        logger.warning(
            f"Protected identity {action} by {triggered_by}",
            extra={'fix_action': action, 'fixed_fields': fixed}
        )
        return AutoFixResult(action, details)

    @classmethod
    def _upsert_master_organization(cls, protected):
        # The existing name is kept; only the level and status are asserted.
        Organization.objects.bulk_create(
            [Organization(
                id=protected.master_organization_id,
                name='Inspecta',
                organization_level=Organization.LEVEL_MASTER,
                is_active=True,
            )],
            update_conflicts=True,
            unique_fields=['id'],
            update_fields=['organization_level', 'is_active', 'updated_at'],
        )

    @classmethod
    def _upsert_actor(cls, protected, expected):
        now = timezone.now()
        Actor.objects.bulk_create(
            [Actor(
                id=protected.actor_id,
                email=protected.email,
                name=protected.name,
                role=expected['role'],
                organization_id=expected['organization_id'],
                is_active=expected['is_active'],
                can_manage_users=expected['can_manage_users'],
                can_create_organizations=expected['can_create_organizations'],
                approval_status=expected['approval_status'],
                approved_at=now,
            )],
            update_conflicts=True,
            unique_fields=['id'],
            update_fields=[
                'role', 'organization', 'is_active', 'can_manage_users',
                'can_create_organizations', 'approval_status', 'updated_at',
            ],
        )

    @classmethod
    def _update_drifted_fields(cls, protected, expected):
        actor = Actor.objects.get(pk=protected.actor_id)
        drifted = {
            name: value for name, value in expected.items()
            if getattr(actor, name) != value
        }
        if drifted:
            Actor.objects.filter(pk=protected.actor_id).update(**drifted, updated_at=timezone.now())
        return sorted(drifted)

    @classmethod
    def _upsert_membership(cls, protected):
        OrganizationMembership.objects.bulk_create(
            [OrganizationMembership(
                actor_id=protected.actor_id,
                organization_id=protected.master_organization_id,
                role=OrganizationMembership.ROLE_OWNER,
                is_active=True,
            )],
            update_conflicts=True,
            unique_fields=['actor', 'organization'],
            update_fields=['role', 'is_active', 'updated_at'],
        )

    @classmethod
    def _upsert_registration(cls, protected, triggered_by):
        ProtectedIdentity.objects.bulk_create(
            [ProtectedIdentity(
                slot=ProtectedIdentity.SINGLETON_SLOT,
                actor_id=protected.actor_id,
                protection_level=ProtectedIdentity.PROTECTION_MAXIMUM,
                protected_roles=PROTECTED_ROLES,
                protected_permissions=PROTECTED_PERMISSIONS,
                reason=PROTECTION_REASON,
                created_by=str(triggered_by),
            )],
            update_conflicts=True,
            unique_fields=['slot'],
            update_fields=[
                'actor', 'protection_level', 'protected_roles',
                'protected_permissions', 'updated_at',
            ],
        )

    @classmethod
    def system_health(cls) -> Dict[str, Any]:
        """
        Snapshot of account and organization consistency.

        Returns:
            dict with the system administrators, orphan actor count,
            organizations without an owner, actors whose capability flags
            disagree with their role, the integrity status and the number
            of dead-lettered audit events
        """
        protected = get_protected_identity()

        system_admins = [
            {
                'id': str(actor.id),
                'email': actor.email,
                'name': actor.name,
                'is_active': actor.is_active,
                'is_protected': protected.matches_id(actor.id),
            }
            for actor in Actor.objects.system_admins().order_by('created_at')
        ]

        unowned = list(
            Organization.objects.without_owner().values('id', 'name', 'organization_level')
        )

        # System admins lacking a capability flag, or non-admins holding one
        # that only system admins should have.
        is_admin = Q(role=Role.SYSTEM_ADMIN)
        inconsistent = [
            {'id': str(actor_id), 'email': email, 'role': role}
            for actor_id, email, role in Actor.objects.filter(
                (is_admin & (Q(can_manage_users=False) | Q(can_create_organizations=False)))
                | (~is_admin & Q(can_create_organizations=True))
            ).values_list('id', 'email', 'role')
        ]

        integrity = cls.check_integrity()

        return {
            'system_admins': system_admins,
            'system_admin_count': len(system_admins),
            'orphan_actor_count': Actor.objects.orphans().count(),
            'organizations_without_owner': unowned,
            'inconsistent_flag_actors': inconsistent,
            'integrity_status': integrity.status,
            'pending_audit_dead_letters': AuditDeadLetter.objects.pending().count(),
            'checked_at': timezone.now().isoformat(),
        }
