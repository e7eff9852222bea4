"""
Protected identity configuration.

The protected identity is the one system account nobody but itself may
modify. Its id, email and home organization come from the environment
(see ``config/settings.py``); nothing in the code hard-codes them.
"""
import uuid
from dataclasses import dataclass

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.validators import validate_email
from django.core.exceptions import ValidationError


@dataclass(frozen=True)
class ProtectedIdentityConfig:
    actor_id: uuid.UUID
    email: str
    name: str
    master_organization_id: int

    def matches_id(self, value):
        """True if ``value`` (UUID, string or None) is the protected actor id."""
        if value is None or value == '':
            return False
        if isinstance(value, uuid.UUID):
            return value == self.actor_id
        try:
            return uuid.UUID(str(value).strip()) == self.actor_id
        except (ValueError, AttributeError, TypeError):
            return False

    def matches_email(self, value):
        if not isinstance(value, str):
            return False
        return value.strip().lower() == self.email

    def is_protected(self, actor):
        """True if ``actor`` is the protected identity."""
        return actor is not None and self.matches_id(getattr(actor, 'id', None))


def load_protected_identity():
    """
    Build the protected identity configuration from settings.

    Raises:
        ImproperlyConfigured: a value is missing or malformed
    """
    raw_id = getattr(settings, 'PROTECTED_IDENTITY_ID', None)
    raw_email = getattr(settings, 'PROTECTED_IDENTITY_EMAIL', None)
    name = getattr(settings, 'PROTECTED_IDENTITY_NAME', None) or 'System Administrator'
    raw_org = getattr(settings, 'MASTER_ORGANIZATION_ID', None)

    if not raw_id:
        raise ImproperlyConfigured("PROTECTED_IDENTITY_ID must be set in environment variables.")
    try:
        actor_id = uuid.UUID(str(raw_id))
    except ValueError:
        raise ImproperlyConfigured(f"PROTECTED_IDENTITY_ID must be a UUID, got '{raw_id}'.")

    if not raw_email:
        raise ImproperlyConfigured("PROTECTED_IDENTITY_EMAIL must be set in environment variables.")
    try:
        validate_email(raw_email)
    except ValidationError:
        raise ImproperlyConfigured("PROTECTED_IDENTITY_EMAIL must be a valid email address.")

    if raw_org in (None, ''):
        raise ImproperlyConfigured("MASTER_ORGANIZATION_ID must be set in environment variables.")
    try:
        master_organization_id = int(raw_org)
    except (TypeError, ValueError):
        raise ImproperlyConfigured(f"MASTER_ORGANIZATION_ID must be an integer, got '{raw_org}'.")
    if master_organization_id <= 0:
        raise ImproperlyConfigured("MASTER_ORGANIZATION_ID must be a positive integer.")

    return ProtectedIdentityConfig(
        actor_id=actor_id,
        email=raw_email.strip().lower(),
        name=name,
        master_organization_id=master_organization_id,
    )


def get_protected_identity():
    """
    Current protected identity configuration.

    Read from settings on every call so ``override_settings`` in tests is
    honoured.
    """
    return load_protected_identity()
