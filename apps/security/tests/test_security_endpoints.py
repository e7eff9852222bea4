"""
Tests for the security management endpoints.
"""
import pytest
from rest_framework import status

from apps.rbac.models import Actor
from apps.security.audit import AuditLogWriter
from apps.security.models import AuditEvent

ENDPOINTS = [
    ('get', '/v1/security/integrity-check'),
    ('post', '/v1/security/auto-fix'),
    ('get', '/v1/security/audit-logs'),
    ('get', '/v1/security/system-health'),
]


@pytest.mark.django_db
class TestAccessControl:

    @pytest.mark.parametrize('method, url', ENDPOINTS)
    def test_org_admin_forbidden(self, auth_client, org_admin, method, url):
        response = getattr(auth_client(org_admin), method)(url)
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()['code'] == 'insufficient_scope'

    def test_denial_is_audited(self, auth_client, org_admin):
        response = auth_client(org_admin).get('/v1/security/system-health')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        event = AuditEvent.objects.get()
        assert event.blocked is True
        assert event.blocked_reason == 'insufficient_scope'
        assert event.action_type == 'blocked_get_scope_check'
        assert event.actor_id == str(org_admin.id)
        assert event.organization_id == 5
        assert event.metadata['view'] == 'SystemHealthView'
        assert event.metadata['missing_scopes'] == ['system:admin']

    @pytest.mark.parametrize('method, url', ENDPOINTS)
    def test_anonymous_unauthorized(self, api_client, method, url):
        assert getattr(api_client, method)(url).status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestIntegrityEndpoints:

    def test_integrity_check_secure(self, auth_client, protected_actor):
        response = auth_client(protected_actor).get('/v1/security/integrity-check')

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body['status'] == 'ok'
        assert body['overall_status'] == 'secure'
        assert body['protection_record'] is True
        assert body['master_organization'] is True
        assert body['membership'] is True

    def test_integrity_check_needs_attention(self, auth_client, system_admin, protected_actor):
        Actor.objects.filter(pk=protected_actor.pk).update(can_create_organizations=False)

        body = auth_client(system_admin).get('/v1/security/integrity-check').json()

        assert body['status'] == 'corrupted'
        assert body['overall_status'] == 'needs_attention'
        assert 'can_create_organizations' in body['details']['drifted_fields']

    def test_integrity_check_missing(self, auth_client, system_admin):
        body = auth_client(system_admin).get('/v1/security/integrity-check').json()
        assert body['status'] == 'missing'
        assert body['protection_record'] is False

    def test_auto_fix(self, auth_client, system_admin, protected_config):
        response = auth_client(system_admin).post('/v1/security/auto-fix')

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body['action'] == 'created'
        assert body['triggered_by'] == str(system_admin.id)
        event = AuditEvent.objects.get(action_type='manual_security_fix')
        assert event.actor_id == str(system_admin.id)
        assert event.request_id == response['X-Request-ID']

    def test_auto_fix_conflict(self, auth_client, system_admin, make_actor, protected_config):
        make_actor('client', email=protected_config.email)

        response = auth_client(system_admin).post('/v1/security/auto-fix')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()['code'] == 'integrity_corrupted'


@pytest.mark.django_db
class TestAuditLogsEndpoint:

    def test_lists_events_involving_protected_identity(self, auth_client, system_admin, protected_actor):
        protected_id = str(protected_actor.id)
        AuditLogWriter.record(system_admin, protected_id, 'blocked_patch_attempt', blocked=True)
        AuditLogWriter.record(protected_id, 'x', 'actor_update', wait=True)
        AuditLogWriter.record(system_admin, 'unrelated', 'blocked_x', blocked=True)

        response = auth_client(system_admin).get('/v1/security/audit-logs')

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body['count'] == 2
        assert body['recent_blocked_attempts'] == 1
        assert {e['action_type'] for e in body['results']} == {'blocked_patch_attempt', 'actor_update'}

    def test_pagination(self, auth_client, system_admin, protected_actor):
        for _ in range(3):
            AuditLogWriter.record(system_admin, protected_actor.id, 'blocked_delete_attempt', blocked=True)

        body = auth_client(system_admin).get('/v1/security/audit-logs?limit=2').json()

        assert body['count'] == 3
        assert len(body['results']) == 2
        assert body['next']


@pytest.mark.django_db
class TestSystemHealthEndpoint:

    def test_system_health(self, auth_client, protected_actor, parent_org):
        body = auth_client(protected_actor).get('/v1/security/system-health').json()

        assert body['system_admin_count'] == 1
        assert body['system_admins'][0]['is_protected'] is True
        assert body['integrity_status'] == 'ok'
        assert body['organizations_without_owner'][0]['id'] == 5
