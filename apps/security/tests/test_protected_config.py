"""
Tests for the protected identity configuration.
"""
import uuid

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from apps.security.config import get_protected_identity, load_protected_identity

PROTECTED_ID = '9b1f4c2e-6a7d-4e3b-8c5f-2d1a0e9f7b64'


class TestLoadProtectedIdentity:

    def test_loads_from_settings(self):
        config = load_protected_identity()
        assert config.actor_id == uuid.UUID(PROTECTED_ID)
        assert config.email == 'root@inspecta.test'
        assert config.master_organization_id == 1

    @override_settings(PROTECTED_IDENTITY_EMAIL='Root@Inspecta.TEST')
    def test_email_normalized(self):
        config = get_protected_identity()
        assert config.email == 'root@inspecta.test'
        assert config.matches_email(' ROOT@inspecta.test ')

    @pytest.mark.parametrize('overrides', [
        {'PROTECTED_IDENTITY_ID': ''},
        {'PROTECTED_IDENTITY_ID': 'not-a-uuid'},
        {'PROTECTED_IDENTITY_EMAIL': None},
        {'PROTECTED_IDENTITY_EMAIL': 'not-an-email'},
        {'MASTER_ORGANIZATION_ID': None},
        {'MASTER_ORGANIZATION_ID': 'one'},
        {'MASTER_ORGANIZATION_ID': 0},
    ])
    def test_invalid_configuration_refused(self, overrides):
        with override_settings(**overrides):
            with pytest.raises(ImproperlyConfigured):
                load_protected_identity()


class TestMatching:

    @pytest.mark.parametrize('value, expected', [
        (PROTECTED_ID, True),
        (PROTECTED_ID.upper(), True),
        (uuid.UUID(PROTECTED_ID), True),
        (str(uuid.uuid4()), False),
        ('user-x', False),
        ('', False),
        (None, False),
        (42, False),
    ])
    def test_matches_id(self, value, expected):
        assert get_protected_identity().matches_id(value) is expected

    def test_is_protected(self):
        config = get_protected_identity()
        assert config.is_protected(type('A', (), {'id': uuid.UUID(PROTECTED_ID)})())
        assert not config.is_protected(None)
