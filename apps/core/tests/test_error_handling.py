"""
Tests for the exception taxonomy, the DRF exception handler and scope
permissions.
"""
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from rest_framework.exceptions import NotFound
from rest_framework.test import APIRequestFactory

from apps.core.exceptions import (
    GENERIC_FORBIDDEN_MESSAGE, AuditWriteFailure, ForbiddenInsufficientScope, ForbiddenOutOfTenant,
    ForbiddenPrivilegeEscalation, ForbiddenProtectedResource, Unauthorized, custom_exception_handler,
)
from apps.core.permissions import HasScopes, IsSystemAdministrator, requires_scopes


def handler_context(request_id='req-1'):
    request = APIRequestFactory().get('/v1/x')
    request.request_id = request_id
    return {'request': request}


class TestExceptionPayloads:

    def test_stable_codes(self):
        assert Unauthorized().status_code == 401
        assert ForbiddenInsufficientScope().code == 'insufficient_scope'
        assert ForbiddenOutOfTenant().code == 'out_of_tenant'
        assert ForbiddenProtectedResource().code == 'SISTEMA_PROTEGIDO'
        assert ForbiddenPrivilegeEscalation().code == 'PRIVILEGIO_RESTRITO'

    def test_scope_and_tenant_denials_look_alike(self):
        scope = ForbiddenInsufficientScope().as_payload()
        tenant = ForbiddenOutOfTenant().as_payload()
        assert scope['message'] == tenant['message'] == GENERIC_FORBIDDEN_MESSAGE
        assert scope['error'] == tenant['error'] == 'forbidden'

    def test_protected_payload_flags(self):
        payload = ForbiddenProtectedResource().as_payload()
        assert payload['protected_user'] is True
        assert payload['system_security'] is True


class TestCustomExceptionHandler:

    def test_inspecta_exception(self):
        response = custom_exception_handler(ForbiddenOutOfTenant(), handler_context())

        assert response.status_code == 403
        assert response.data['code'] == 'out_of_tenant'
        assert response.data['request_id'] == 'req-1'

    def test_server_errors_hide_detail(self):
        response = custom_exception_handler(AuditWriteFailure('relation "audit_events" does not exist'),
                                            handler_context())
        assert response.status_code == 500
        assert 'audit_events' not in response.data['message']

    def test_drf_exception_gets_request_id(self):
        response = custom_exception_handler(NotFound(), handler_context())
        assert response.status_code == 404
        assert response.data['request_id'] == 'req-1'

    def test_unexpected_exception_is_generic_500(self):
        response = custom_exception_handler(RuntimeError('db password=x'), handler_context())
        assert response.status_code == 500
        assert response.data['error'] == 'internal_error'
        assert 'password' not in response.data['message']


def scoped_request(scopes, actor=True):
    return SimpleNamespace(
        actor=SimpleNamespace(id='a1') if actor else None,
        scopes=frozenset(scopes),
        method='GET',
        path='/v1/x',
    )


class TestScopePermissions:

    @pytest.fixture(autouse=True)
    def audit_record(self):
        with patch('apps.core.permissions.AuditLogWriter.record') as record:
            yield record

    def test_requires_actor(self):
        with pytest.raises(Unauthorized):
            HasScopes().has_permission(scoped_request([], actor=False), SimpleNamespace())

    def test_all_scopes_needed(self, audit_record):
        view = SimpleNamespace(required_scopes={'users:read', 'users:write'})
        assert HasScopes().has_permission(scoped_request(['users:read', 'users:write']), view)
        assert not audit_record.called
        with pytest.raises(ForbiddenInsufficientScope):
            HasScopes().has_permission(scoped_request(['users:read']), view)

        kwargs = audit_record.call_args.kwargs
        assert kwargs['blocked'] is True
        assert kwargs['blocked_reason'] == 'insufficient_scope'
        assert kwargs['metadata']['missing_scopes'] == ['users:write']

    def test_one_of_several_scopes_is_not_enough(self):
        view = SimpleNamespace(required_scopes={'users:read', 'inspections:read'})
        with pytest.raises(ForbiddenInsufficientScope):
            HasScopes().has_permission(scoped_request(['inspections:read']), view)

    def test_universal_scope(self):
        view = SimpleNamespace(required_scopes={'anything'})
        assert HasScopes().has_permission(scoped_request(['system:admin']), view)

    def test_no_requirement(self):
        assert HasScopes().has_permission(scoped_request([]), SimpleNamespace())

    def test_system_administrator_only(self):
        assert IsSystemAdministrator().has_permission(scoped_request(['system:admin']), SimpleNamespace())
        with pytest.raises(ForbiddenInsufficientScope):
            IsSystemAdministrator().has_permission(scoped_request(['users:write']), SimpleNamespace())

    def test_requires_scopes_on_class(self):
        @requires_scopes('users:read')
        class View:
            pass

        assert View.required_scopes == {'users:read'}

    def test_requires_scopes_on_method(self):
        class View:
            @requires_scopes('users:delete')
            def delete(self, request):
                return 'deleted'

        assert View().delete(scoped_request(['users:delete'])) == 'deleted'
        with pytest.raises(ForbiddenInsufficientScope):
            View().delete(scoped_request(['users:read']))
