"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """
    Configure Django settings for tests.

    Runs on in-memory SQLite unless DATABASE_URL points at another engine.
    """
    if settings.DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':
        settings.DATABASES['default'] = {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',
            'ATOMIC_REQUESTS': False,
        }
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database from the current models."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def protected_config():
    from apps.security.config import get_protected_identity
    return get_protected_identity()


@pytest.fixture
def master_org(db, protected_config):
    """The master organization the protected identity belongs to."""
    from apps.organizations.models import Organization
    return Organization.objects.create(
        id=protected_config.master_organization_id,
        name='Inspecta',
        organization_level=Organization.LEVEL_MASTER,
    )


@pytest.fixture
def parent_org(db):
    """Organization 5: a company with one subsidiary."""
    from apps.organizations.models import Organization
    return Organization.objects.create(id=5, name='Acme Inspections')


@pytest.fixture
def child_org(db, parent_org):
    """Organization 7: subsidiary of organization 5."""
    from apps.organizations.models import Organization
    return Organization.objects.create(
        id=7,
        name='Acme North',
        parent_organization=parent_org,
        organization_level=Organization.LEVEL_SUBSIDIARY,
    )


@pytest.fixture
def other_org(db):
    """Organization 9: unrelated company for isolation tests."""
    from apps.organizations.models import Organization
    return Organization.objects.create(id=9, name='Globex Surveys')


@pytest.fixture
def make_actor(db):
    """Factory for approved, active actors."""
    from apps.rbac.models import Actor

    counter = {'n': 0}

    def _make(role='client', organization=None, **kwargs):
        counter['n'] += 1
        kwargs.setdefault('email', f"{role}{counter['n']}@example.com")
        kwargs.setdefault('name', f"{role.title()} {counter['n']}")
        kwargs.setdefault('approval_status', Actor.APPROVAL_APPROVED)
        return Actor.objects.create(role=role, organization=organization, **kwargs)

    return _make


@pytest.fixture
def system_admin(make_actor, other_org):
    return make_actor(
        'system_admin', organization=other_org,
        can_manage_users=True, can_create_organizations=True,
    )


@pytest.fixture
def org_admin(make_actor, parent_org, child_org):
    """Admin of organization 5, which reaches 5 and 7."""
    return make_actor('org_admin', organization=parent_org, managed_organization=parent_org,
                      can_manage_users=True)


@pytest.fixture
def child_org_admin(make_actor, child_org):
    """Admin of organization 7, which reaches only 7."""
    return make_actor('org_admin', organization=child_org, managed_organization=child_org,
                      can_manage_users=True)


@pytest.fixture
def manager(make_actor, parent_org):
    return make_actor('manager', organization=parent_org)


@pytest.fixture
def inspector(make_actor, parent_org):
    return make_actor('inspector', organization=parent_org)


@pytest.fixture
def client_actor(make_actor, parent_org):
    return make_actor('client', organization=parent_org)


@pytest.fixture
def protected_actor(db, master_org, protected_config):
    """The protected identity in its expected, fully consistent state."""
    from django.utils import timezone
    from apps.organizations.models import OrganizationMembership
    from apps.rbac.models import Actor
    from apps.security.integrity import PROTECTED_PERMISSIONS, PROTECTED_ROLES
    from apps.security.models import ProtectedIdentity

    actor = Actor.objects.create(
        id=protected_config.actor_id,
        email=protected_config.email,
        name=protected_config.name,
        role='system_admin',
        organization=master_org,
        can_manage_users=True,
        can_create_organizations=True,
        approval_status=Actor.APPROVAL_APPROVED,
        approved_at=timezone.now(),
    )
    OrganizationMembership.objects.create(
        actor=actor, organization=master_org, role=OrganizationMembership.ROLE_OWNER,
    )
    ProtectedIdentity.objects.create(
        actor=actor,
        protected_roles=PROTECTED_ROLES,
        protected_permissions=PROTECTED_PERMISSIONS,
        created_by='system',
    )
    return actor


@pytest.fixture
def auth_client():
    """Factory returning an APIClient authenticated as the given actor."""
    from rest_framework.test import APIClient
    from apps.rbac.services import AuthService

    def _client(actor):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {AuthService.generate_jwt(actor)}')
        return client

    return _client
