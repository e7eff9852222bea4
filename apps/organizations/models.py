"""
Organization hierarchy models.

Organizations form a forest through ``parent_organization``: the master
organization at the root, companies below it, subsidiaries below companies.
"""
from django.db import models
from apps.core.models import BaseModel


class OrganizationManager(models.Manager):
    """Manager for Organization queries."""

    def active(self):
        """Return only active organizations."""
        return self.filter(is_active=True)

    def children_of(self, organization_id):
        """Direct subsidiaries of an organization."""
        return self.filter(parent_organization_id=organization_id)

    def without_owner(self):
        """Organizations with no active owner membership."""
        return self.exclude(
            id__in=OrganizationMembership.objects.owners().values('organization_id')
        )


class Organization(BaseModel):
    """
    A tenant in the inspection platform.

    Integer ids are shared with the inspection collaborators, so the primary
    key stays numeric.
    """

    LEVEL_MASTER = 'master'
    LEVEL_COMPANY = 'company'
    LEVEL_SUBSIDIARY = 'subsidiary'
    LEVEL_CHOICES = [
        (LEVEL_MASTER, 'Master'),
        (LEVEL_COMPANY, 'Company'),
        (LEVEL_SUBSIDIARY, 'Subsidiary'),
    ]

    id = models.BigAutoField(primary_key=True)
    name = models.CharField(
        max_length=255,
        help_text="Organization display name"
    )
    parent_organization = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='subsidiaries',
        db_index=True,
        help_text="Parent organization (null for top-level organizations)"
    )
    organization_level = models.CharField(
        max_length=20,
        choices=LEVEL_CHOICES,
        default=LEVEL_COMPANY,
        help_text="Position of the organization in the hierarchy"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the organization is active"
    )

    objects = OrganizationManager()

    class Meta:
        db_table = 'organizations'
        ordering = ['name']
        indexes = [
            models.Index(fields=['parent_organization', 'is_active']),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        from apps.organizations.services import validate_parent
        super().clean()
        validate_parent(self, self.parent_organization_id)

    def save(self, *args, **kwargs):
        from apps.organizations.services import validate_parent
        validate_parent(self, self.parent_organization_id)
        super().save(*args, **kwargs)


class OrganizationMembershipManager(models.Manager):
    """Manager for OrganizationMembership queries."""

    def for_actor(self, actor):
        return self.filter(actor=actor, is_active=True)

    def owners(self):
        return self.filter(role=OrganizationMembership.ROLE_OWNER, is_active=True)


class OrganizationMembership(BaseModel):
    """
    Association between an Actor and an Organization.

    The protected identity is registered as owner of the master organization;
    the system-health report uses owner rows to find unowned organizations.
    """

    ROLE_OWNER = 'owner'
    ROLE_ADMIN = 'admin'
    ROLE_MEMBER = 'member'
    ROLE_CHOICES = [
        (ROLE_OWNER, 'Owner'),
        (ROLE_ADMIN, 'Admin'),
        (ROLE_MEMBER, 'Member'),
    ]

    actor = models.ForeignKey(
        'rbac.Actor',
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="Member actor"
    )
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="Organization the actor belongs to"
    )
    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        default=ROLE_MEMBER,
        help_text="Role inside the organization"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether membership is active"
    )

    objects = OrganizationMembershipManager()

    class Meta:
        db_table = 'organization_memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['actor', 'organization'], name='unique_actor_organization'),
        ]
        indexes = [
            models.Index(fields=['organization', 'role', 'is_active']),
        ]

    def __str__(self):
        return f"{self.actor_id} @ {self.organization_id} ({self.role})"
