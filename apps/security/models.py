"""
Security models: the audit trail, its dead letters and the protected
identity registration.
"""
import logging
from datetime import timedelta

from django.db import models
from django.utils import timezone

from apps.core.exceptions import AuditImmutableError
from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class AuditEventQuerySet(models.QuerySet):
    """Audit events can be inserted and read, never changed."""

    def update(self, **kwargs):
        raise AuditImmutableError()

    def delete(self):
        raise AuditImmutableError()

    def blocked(self):
        return self.filter(blocked=True)

    def for_target(self, target_id):
        return self.filter(target_id=str(target_id))

    def involving(self, actor_id):
        """Events where the actor is either the caller or the target."""
        actor_id = str(actor_id)
        return self.filter(models.Q(target_id=actor_id) | models.Q(actor_id=actor_id))

    def recent(self, hours=24):
        cutoff = timezone.now() - timedelta(hours=hours)
        return self.filter(created_at__gte=cutoff)

    def search(self, term):
        """Case-insensitive match on the action label or the target id."""
        return self.filter(models.Q(action_type__icontains=term) | models.Q(target_id__icontains=term))


class AuditEvent(models.Model):
    """
    Immutable record of a sensitive operation or a blocked attempt.

    ``actor_id`` and ``target_id`` are plain strings: callers may be
    ``anonymous`` or ``system`` and targets are not always actors.
    """

    ACTOR_ANONYMOUS = 'anonymous'
    ACTOR_SYSTEM = 'system'

    id = models.BigAutoField(primary_key=True)
    actor_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Actor who attempted the operation (or 'anonymous'/'system')"
    )
    target_id = models.CharField(
        max_length=255,
        blank=True,
        default='',
        db_index=True,
        help_text="Resource or actor the operation targeted"
    )
    target_type = models.CharField(
        max_length=50,
        blank=True,
        default='',
        db_index=True,
        help_text="Kind of resource targeted (e.g., 'actor', 'organization')"
    )
    organization_id = models.IntegerField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Organization the operation touched; scopes audit browsing"
    )
    action_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'blocked_patch_attempt', 'auto_integrity_fix')"
    )
    old_value = models.JSONField(
        null=True,
        blank=True,
        help_text="State before the operation"
    )
    new_value = models.JSONField(
        null=True,
        blank=True,
        help_text="Requested or resulting state"
    )
    blocked = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the operation was denied"
    )
    blocked_reason = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Decision reason when blocked"
    )

    # Request Context
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    user_agent = models.TextField(
        blank=True,
        default='',
        help_text="User agent string"
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Request ID for tracing"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context metadata"
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the event happened"
    )

    objects = AuditEventQuerySet.as_manager()

    class Meta:
        db_table = 'audit_events'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['target_id', 'created_at']),
            models.Index(fields=['blocked', 'created_at']),
            models.Index(fields=['organization_id', 'created_at']),
        ]

    def __str__(self):
        state = 'blocked' if self.blocked else 'allowed'
        return f"{self.actor_id} -> {self.target_id}: {self.action_type} ({state})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AuditImmutableError()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AuditImmutableError()


class AuditDeadLetterManager(models.Manager):

    def pending(self):
        return self.filter(replayed_at__isnull=True)


class AuditDeadLetter(BaseModel):
    """
    Audit payload that could not be written after every retry.

    Kept verbatim so ``replay_audit_dead_letters`` can try again later.
    """

    payload = models.JSONField(
        help_text="Audit event fields as dispatched to the writer task"
    )
    error = models.TextField(
        blank=True,
        default='',
        help_text="Last error raised while writing"
    )
    attempts = models.PositiveIntegerField(
        default=0,
        help_text="Write attempts made before parking the payload"
    )
    task_id = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Celery task id of the last attempt"
    )
    replayed_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the payload was finally written"
    )

    objects = AuditDeadLetterManager()

    class Meta:
        db_table = 'audit_dead_letters'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.payload.get('action_type', 'unknown')} ({self.attempts} attempts)"


class ProtectedIdentity(BaseModel):
    """
    Registration of the protected identity.

    ``slot`` is always 1 and unique, so the table holds at most one row and
    upserts converge on it.
    """

    SINGLETON_SLOT = 1
    PROTECTION_MAXIMUM = 'maximum'

    slot = models.PositiveSmallIntegerField(
        default=SINGLETON_SLOT,
        unique=True,
        editable=False,
        help_text="Singleton key; always 1"
    )
    actor = models.OneToOneField(
        'rbac.Actor',
        on_delete=models.PROTECT,
        related_name='protection',
        help_text="The protected actor"
    )
    protection_level = models.CharField(
        max_length=20,
        default=PROTECTION_MAXIMUM,
        help_text="Protection level"
    )
    protected_roles = models.JSONField(
        default=list,
        blank=True,
        help_text="Roles that cannot be removed from the actor"
    )
    protected_permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Capability flags that cannot be revoked"
    )
    reason = models.TextField(
        blank=True,
        default='',
        help_text="Why this identity is protected"
    )
    created_by = models.CharField(
        max_length=64,
        blank=True,
        default='',
        help_text="Who registered the protection ('system' for auto-fix)"
    )

    class Meta:
        db_table = 'protected_identities'
        verbose_name_plural = 'protected identities'

    def __str__(self):
        return f"Protected identity {self.actor_id} ({self.protection_level})"

    def save(self, *args, **kwargs):
        self.slot = self.SINGLETON_SLOT
        super().save(*args, **kwargs)
