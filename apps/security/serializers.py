"""
Serializers for the security management endpoints.
"""
from rest_framework import serializers

from apps.security.models import AuditEvent


class AuditEventSerializer(serializers.ModelSerializer):
    """Read-only representation of an audit event."""

    class Meta:
        model = AuditEvent
        fields = [
            'id', 'actor_id', 'target_id', 'target_type', 'organization_id', 'action_type',
            'old_value', 'new_value', 'blocked', 'blocked_reason',
            'ip_address', 'user_agent', 'request_id', 'metadata', 'created_at',
        ]
        read_only_fields = fields


class IntegrityCheckSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['ok', 'corrupted', 'missing'])
    details = serializers.DictField()
    protection_record = serializers.BooleanField()
    master_organization = serializers.BooleanField()
    membership = serializers.BooleanField()
    overall_status = serializers.ChoiceField(choices=['secure', 'needs_attention'])
    checked_at = serializers.DateTimeField()


class AutoFixSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['created', 'updated', 'no_action_needed'])
    details = serializers.DictField()
    triggered_by = serializers.CharField()


class SystemHealthSerializer(serializers.Serializer):
    system_admins = serializers.ListField(child=serializers.DictField())
    system_admin_count = serializers.IntegerField()
    orphan_actor_count = serializers.IntegerField()
    organizations_without_owner = serializers.ListField(child=serializers.DictField())
    inconsistent_flag_actors = serializers.ListField(child=serializers.DictField())
    integrity_status = serializers.CharField()
    pending_audit_dead_letters = serializers.IntegerField()
    checked_at = serializers.DateTimeField()


class AuditLogFilterSerializer(serializers.Serializer):
    """Query parameters of the audit log list."""

    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    action_type = serializers.CharField(max_length=100, required=False)
    target_type = serializers.CharField(max_length=50, required=False)
    user_id = serializers.CharField(max_length=64, required=False)
    organization_id = serializers.IntegerField(required=False, min_value=1)
    search = serializers.CharField(max_length=200, required=False)

    def validate(self, attrs):
        start, end = attrs.get('start_date'), attrs.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError({'end_date': 'end_date must not be before start_date.'})
        return attrs


class AuditStatsQuerySerializer(serializers.Serializer):
    days = serializers.IntegerField(required=False, default=30, min_value=1, max_value=365)


class AuditStatsSerializer(serializers.Serializer):
    period = serializers.DictField()
    total_events = serializers.IntegerField()
    by_action_type = serializers.ListField(child=serializers.DictField())
    by_target_type = serializers.ListField(child=serializers.DictField())
    top_actors = serializers.ListField(child=serializers.DictField())
    daily_activity = serializers.ListField(child=serializers.DictField())
    security_alerts = serializers.IntegerField()
