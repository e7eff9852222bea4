"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Actor accounts
- Profile edits
- Approval decisions
"""
from rest_framework import serializers

from apps.organizations.models import Organization
from apps.rbac.models import Actor
from apps.rbac.roles import Role, SYSTEM_ADMIN_ROLE_VALUES


class ActorSerializer(serializers.ModelSerializer):
    """Serializer for Actor model."""

    organization_id = serializers.IntegerField(read_only=True, allow_null=True)
    managed_organization_id = serializers.IntegerField(read_only=True, allow_null=True)
    approved_by_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Actor
        fields = [
            'id', 'email', 'name', 'role',
            'organization_id', 'managed_organization_id',
            'is_active', 'can_manage_users', 'can_create_organizations',
            'approval_status', 'approved_by_id', 'approved_at', 'rejection_reason',
            'last_active_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class ActorUpdateSerializer(serializers.Serializer):
    """
    Validates a partial profile edit.

    ``role`` must be a known role string, except for the legacy system
    administrator aliases which are accepted here so the privilege
    escalation check can refuse them explicitly.
    """

    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    role = serializers.CharField(max_length=50, required=False)
    organization_id = serializers.PrimaryKeyRelatedField(
        queryset=Organization.objects.all(),
        source='organization',
        required=False,
        allow_null=True,
    )
    managed_organization_id = serializers.PrimaryKeyRelatedField(
        queryset=Organization.objects.all(),
        source='managed_organization',
        required=False,
        allow_null=True,
    )
    is_active = serializers.BooleanField(required=False)
    can_manage_users = serializers.BooleanField(required=False)
    can_create_organizations = serializers.BooleanField(required=False)

    def validate_role(self, value):
        value = value.strip()
        if value in SYSTEM_ADMIN_ROLE_VALUES:
            return value
        if Role.parse(value) is None:
            raise serializers.ValidationError(
                f"Unknown role '{value}'. Valid roles: {', '.join(Role.values)}"
            )
        return value

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("At least one field must be provided.")
        return attrs


class RejectActorSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000, required=False, allow_blank=True, default='')
