"""
Tests for the actor REST endpoints.

Tests:
- GET/PATCH/DELETE /v1/users/{actor_id}
- GET /v1/users/pending
- POST /v1/users/{actor_id}/approve and /reject
"""
import uuid

import pytest
from rest_framework import status

from apps.rbac.models import Actor
from apps.security.models import AuditEvent


@pytest.mark.django_db
class TestActorDetailEndpoint:

    def test_get_in_reach(self, auth_client, org_admin, make_actor, child_org):
        target = make_actor('inspector', organization=child_org)
        response = auth_client(org_admin).get(f'/v1/users/{target.id}')

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['organization_id'] == 7

    def test_get_out_of_reach(self, auth_client, child_org_admin, inspector):
        response = auth_client(child_org_admin).get(f'/v1/users/{inspector.id}')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        body = response.json()
        assert body['error'] == 'forbidden'
        assert body['code'] == 'out_of_tenant'
        assert body['request_id']

    def test_get_without_users_read(self, auth_client, client_actor, inspector):
        response = auth_client(client_actor).get(f'/v1/users/{inspector.id}')
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()['code'] == 'insufficient_scope'

    def test_get_unknown_actor(self, auth_client, system_admin):
        response = auth_client(system_admin).get(f'/v1/users/{uuid.uuid4()}')
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_patch(self, auth_client, org_admin, inspector):
        response = auth_client(org_admin).patch(
            f'/v1/users/{inspector.id}', {'name': 'Field Lead', 'role': 'manager'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['role'] == 'manager'
        inspector.refresh_from_db()
        assert inspector.name == 'Field Lead'

    def test_patch_unknown_role(self, auth_client, org_admin, inspector):
        response = auth_client(org_admin).patch(
            f'/v1/users/{inspector.id}', {'role': 'overlord'}, format='json'
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'role' in response.json()

    def test_patch_empty_body(self, auth_client, org_admin, inspector):
        response = auth_client(org_admin).patch(f'/v1/users/{inspector.id}', {}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_patch_transfer_out_of_reach(self, auth_client, org_admin, inspector, other_org):
        response = auth_client(org_admin).patch(
            f'/v1/users/{inspector.id}', {'organization_id': other_org.id}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN
        inspector.refresh_from_db()
        assert inspector.organization_id == 5

    def test_patch_requires_users_write(self, auth_client, manager, inspector):
        response = auth_client(manager).patch(
            f'/v1/users/{inspector.id}', {'name': 'X'}, format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()['code'] == 'insufficient_scope'

        event = AuditEvent.objects.get()
        assert event.blocked is True
        assert event.blocked_reason == 'insufficient_scope'
        assert event.actor_id == str(manager.id)
        assert event.target_id == str(inspector.id)
        assert event.action_type == 'blocked_patch_scope_check'
        assert event.request_id == response['X-Request-ID']

    def test_org_admin_cannot_widen_own_reach(self, auth_client, org_admin, other_org, make_actor):
        outsider = make_actor('inspector', organization=other_org)
        response = auth_client(org_admin).patch(
            f'/v1/users/{org_admin.id}', {'managed_organization_id': other_org.id}, format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()['code'] == 'PRIVILEGIO_RESTRITO'
        org_admin.refresh_from_db()
        assert org_admin.managed_organization_id == 5
        assert auth_client(org_admin).get(f'/v1/users/{outsider.id}').json()['code'] == 'out_of_tenant'

    def test_delete_deactivates(self, auth_client, system_admin, inspector):
        response = auth_client(system_admin).delete(f'/v1/users/{inspector.id}')

        assert response.status_code == status.HTTP_204_NO_CONTENT
        inspector.refresh_from_db()
        assert not inspector.is_active
        assert Actor.objects.filter(pk=inspector.pk).exists()

    def test_deactivated_actor_token_rejected(self, auth_client, system_admin, inspector):
        client = auth_client(inspector)
        auth_client(system_admin).delete(f'/v1/users/{inspector.id}')
        assert client.get(f'/v1/users/{inspector.id}').status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestApprovalEndpoints:

    @pytest.fixture
    def applicant(self, make_actor, child_org):
        return make_actor('client', organization=child_org, approval_status=Actor.APPROVAL_PENDING)

    def test_pending_list(self, auth_client, org_admin, applicant):
        response = auth_client(org_admin).get('/v1/users/pending')

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body['count'] == 1
        assert body['results'][0]['id'] == str(applicant.id)

    def test_pending_list_requires_users_read(self, auth_client, client_actor):
        response = auth_client(client_actor).get('/v1/users/pending')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_approve(self, auth_client, org_admin, applicant):
        response = auth_client(org_admin).post(f'/v1/users/{applicant.id}/approve')

        assert response.status_code == status.HTTP_200_OK
        assert response.json()['approval_status'] == 'approved'

    def test_reject_then_approve_conflicts(self, auth_client, org_admin, applicant):
        client = auth_client(org_admin)
        reject = client.post(f'/v1/users/{applicant.id}/reject', {'reason': 'Duplicate'}, format='json')
        approve = client.post(f'/v1/users/{applicant.id}/approve')

        assert reject.status_code == status.HTTP_200_OK
        assert reject.json()['rejection_reason'] == 'Duplicate'
        assert approve.status_code == status.HTTP_409_CONFLICT
        assert approve.json()['code'] == 'invalid_approval_transition'

    def test_approve_requires_users_write(self, auth_client, manager, applicant):
        response = auth_client(manager).post(f'/v1/users/{applicant.id}/approve')
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not AuditEvent.objects.filter(action_type='actor_approve').exists()
