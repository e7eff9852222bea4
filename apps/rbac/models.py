"""
RBAC models.

An Actor is the authenticated principal behind every request: it carries
one role (resolved to scopes in ``apps.rbac.roles``), its home organization
and, for organization admins, the organization they manage.
"""
import uuid
import logging
from django.db import models
from django.utils import timezone
from apps.core.models import BaseModel
from apps.rbac.roles import Role

logger = logging.getLogger(__name__)


class ActorManager(models.Manager):
    """Manager for Actor queries."""

    def active(self):
        """Return only active actors."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find actor by email, case-insensitive."""
        if not email:
            return None
        return self.filter(email__iexact=email.strip()).first()

    def pending_approval(self):
        return self.filter(approval_status=Actor.APPROVAL_PENDING)

    def system_admins(self):
        return self.filter(role=Role.SYSTEM_ADMIN)

    def orphans(self):
        """Actors without an organization that are not system administrators."""
        return self.filter(organization__isnull=True).exclude(role=Role.SYSTEM_ADMIN)


class Actor(BaseModel):
    """
    Authenticated principal (user account) of the inspection platform.

    ``role`` stores the raw string so legacy values such as ``sys_admin``
    can still be loaded; they resolve to no scopes.
    """

    APPROVAL_PENDING = 'pending'
    APPROVAL_APPROVED = 'approved'
    APPROVAL_REJECTED = 'rejected'
    APPROVAL_CHOICES = [
        (APPROVAL_PENDING, 'Pending'),
        (APPROVAL_APPROVED, 'Approved'),
        (APPROVAL_REJECTED, 'Rejected'),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False
    )
    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="Actor email address (unique globally)"
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Display name"
    )
    role = models.CharField(
        max_length=50,
        default=Role.CLIENT,
        db_index=True,
        help_text="Role string; unknown values grant no scopes"
    )

    organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='actors',
        db_index=True,
        help_text="Home organization"
    )
    managed_organization = models.ForeignKey(
        'organizations.Organization',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='administrators',
        help_text="Organization managed by an org admin (includes its direct subsidiaries)"
    )

    # Status and capability flags
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether actor account is active"
    )
    can_manage_users = models.BooleanField(
        default=False,
        help_text="May manage other users"
    )
    can_create_organizations = models.BooleanField(
        default=False,
        help_text="May create organizations"
    )

    # Approval workflow
    approval_status = models.CharField(
        max_length=20,
        choices=APPROVAL_CHOICES,
        default=APPROVAL_PENDING,
        db_index=True,
        help_text="Account approval status"
    )
    approved_by = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='approved_actors',
        help_text="Actor who approved or rejected this account"
    )
    approved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the approval decision was made"
    )
    rejection_reason = models.TextField(
        blank=True,
        default='',
        help_text="Reason given when the account was rejected"
    )

    # Activity Tracking
    last_active_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last authenticated request"
    )

    objects = ActorManager()

    class Meta:
        db_table = 'actors'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['organization', 'is_active']),
            models.Index(fields=['approval_status', 'created_at']),
        ]

    def __str__(self):
        return self.email

    @property
    def is_authenticated(self):
        """Actors reaching a view were resolved from a valid token."""
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_approved(self):
        return self.approval_status == self.APPROVAL_APPROVED

    def touch(self, min_interval=None):
        """
        Update last_active_at to current time.

        With ``min_interval`` the write is skipped when the previous touch is
        more recent than that. Returns True when the row was updated.
        """
        now = timezone.now()
        if min_interval is not None and self.last_active_at and now - self.last_active_at < min_interval:
            return False
        self.last_active_at = now
        Actor.objects.filter(pk=self.pk).update(last_active_at=now)
        return True
