"""
Roles, scopes and the fixed role-to-scope table.

Every actor carries exactly one role. A role maps to a closed set of
capability scopes; anything the table does not know maps to no scopes.
"""
from django.db import models


class Role(models.TextChoices):
    SYSTEM_ADMIN = 'system_admin', 'System administrator'
    ORG_ADMIN = 'org_admin', 'Organization administrator'
    MANAGER = 'manager', 'Manager'
    INSPECTOR = 'inspector', 'Inspector'
    CLIENT = 'client', 'Client'

    @classmethod
    def parse(cls, value):
        """Return the matching Role, or None for unknown/legacy strings."""
        try:
            return cls(value)
        except ValueError:
            return None


class Scope(models.TextChoices):
    USERS_READ = 'users:read', 'Read users'
    USERS_WRITE = 'users:write', 'Edit users'
    USERS_DELETE = 'users:delete', 'Delete users'
    USERS_INVITATIONS_READ = 'users:invitations:read', 'Read invitations'
    USERS_INVITATIONS_WRITE = 'users:invitations:write', 'Send invitations'
    FOLDERS_READ = 'checklist:folders:read', 'Read checklist folders'
    FOLDERS_WRITE = 'checklist:folders:write', 'Edit checklist folders'
    FOLDERS_DELETE = 'checklist:folders:delete', 'Delete checklist folders'
    TEMPLATES_READ = 'checklist:templates:read', 'Read checklist templates'
    TEMPLATES_WRITE = 'checklist:templates:write', 'Edit checklist templates'
    ORGANIZATIONS_READ = 'organizations:read', 'Read organizations'
    ORGANIZATIONS_WRITE = 'organizations:write', 'Edit organizations'
    INSPECTIONS_READ = 'inspections:read', 'Read inspections'
    INSPECTIONS_WRITE = 'inspections:write', 'Edit inspections'
    SYSTEM_ADMIN = 'system:admin', 'System administration'


# Holding this scope satisfies every check.
UNIVERSAL_SCOPE = Scope.SYSTEM_ADMIN

# Role strings that would grant system administration if they were honoured.
# The legacy spellings resolve to no scopes, but the guard still refuses to
# let anyone but the protected identity write them.
SYSTEM_ADMIN_ROLE_VALUES = frozenset({'system_admin', 'sys_admin', 'admin'})

ROLE_SCOPES = {
    Role.SYSTEM_ADMIN: frozenset(Scope),
    Role.ORG_ADMIN: frozenset({
        Scope.USERS_READ,
        Scope.USERS_WRITE,
        Scope.USERS_INVITATIONS_READ,
        Scope.USERS_INVITATIONS_WRITE,
        Scope.FOLDERS_READ,
        Scope.FOLDERS_WRITE,
        Scope.TEMPLATES_READ,
        Scope.TEMPLATES_WRITE,
        Scope.ORGANIZATIONS_READ,
        Scope.ORGANIZATIONS_WRITE,
        Scope.INSPECTIONS_READ,
        Scope.INSPECTIONS_WRITE,
    }),
    Role.MANAGER: frozenset({
        Scope.USERS_READ,
        Scope.FOLDERS_READ,
        Scope.FOLDERS_WRITE,
        Scope.TEMPLATES_READ,
        Scope.TEMPLATES_WRITE,
        Scope.INSPECTIONS_READ,
        Scope.INSPECTIONS_WRITE,
    }),
    Role.INSPECTOR: frozenset({
        Scope.FOLDERS_READ,
        Scope.TEMPLATES_READ,
        Scope.INSPECTIONS_READ,
        Scope.INSPECTIONS_WRITE,
    }),
    Role.CLIENT: frozenset({
        Scope.INSPECTIONS_READ,
    }),
}


def get_scopes(role):
    """
    Resolve a role (enum member or raw string) to its scopes.

    Unknown roles get an empty set; this never raises.
    """
    parsed = Role.parse(role) if role is not None else None
    if parsed is None:
        return frozenset()
    return ROLE_SCOPES[parsed]


def has_scope(role, scope):
    """True if the role holds ``scope`` directly or through the universal scope."""
    scopes = get_scopes(role)
    return UNIVERSAL_SCOPE in scopes or scope in scopes
