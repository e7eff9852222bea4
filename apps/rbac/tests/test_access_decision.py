"""
Tests for AccessDecisionService.

Tests:
- Rule order (protected target, universal scope, scope in tenant, ownership)
- Asymmetric parent/child reachability
- Audit trail of denials and allowed mutations
"""
import uuid

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from apps.core.exceptions import (
    ForbiddenInsufficientScope, ForbiddenOutOfTenant, ForbiddenProtectedResource,
)
from apps.rbac.models import Actor
from apps.rbac.roles import Role, Scope
from apps.rbac.services import (
    AccessDecisionService, DecisionReason, Operation, ResourceDescriptor, authorize,
)
from apps.security.models import AuditEvent


def resource_in(organization_id, **kwargs):
    return ResourceDescriptor(resource_type='checklist_template', resource_id=42,
                              organization_id=organization_id, **kwargs)


@pytest.mark.django_db
class TestDecide:
    """Pure decision rules."""

    def test_org_admin_of_parent_allowed_on_child(self, org_admin, child_org):
        decision = AccessDecisionService.decide(
            org_admin, resource_in(7), 'checklist:templates:write', Operation.UPDATE
        )
        assert decision.allow
        assert decision.reason == DecisionReason.SCOPE_IN_TENANT

    def test_org_admin_of_child_denied_on_parent(self, child_org_admin, parent_org):
        decision = AccessDecisionService.decide(
            child_org_admin, resource_in(5), Scope.TEMPLATES_WRITE, Operation.UPDATE
        )
        assert not decision.allow
        assert decision.reason == DecisionReason.OUT_OF_TENANT

    def test_missing_scope_reported_before_tenant(self, client_actor):
        decision = AccessDecisionService.decide(
            client_actor, resource_in(5), Scope.TEMPLATES_WRITE, Operation.UPDATE
        )
        assert decision.reason == DecisionReason.INSUFFICIENT_SCOPE

    def test_scope_in_own_organization(self, inspector):
        decision = AccessDecisionService.decide(
            inspector, resource_in(5), Scope.INSPECTIONS_WRITE, Operation.CREATE
        )
        assert decision.reason == DecisionReason.SCOPE_IN_TENANT

    def test_system_admin_allowed_anywhere(self, system_admin, parent_org):
        for org_id in (5, 999, None):
            decision = AccessDecisionService.decide(
                system_admin, resource_in(org_id), 'made:up:scope', Operation.DELETE
            )
            assert decision.allow
            assert decision.reason == DecisionReason.SYSTEM_SCOPE

    def test_creator_allowed_without_scope(self, client_actor, other_org):
        decision = AccessDecisionService.decide(
            client_actor, resource_in(9, created_by=client_actor.id),
            Scope.INSPECTIONS_WRITE, Operation.UPDATE
        )
        assert decision.allow
        assert decision.reason == DecisionReason.OWNERSHIP

    def test_assignee_allowed_outside_tenant(self, inspector, other_org):
        decision = AccessDecisionService.decide(
            inspector, resource_in(9, assigned_to=str(inspector.id)),
            Scope.INSPECTIONS_WRITE, Operation.UPDATE
        )
        assert decision.reason == DecisionReason.OWNERSHIP

    def test_unrelated_assignee_does_not_help(self, inspector, other_org):
        decision = AccessDecisionService.decide(
            inspector, resource_in(9, assigned_to=uuid.uuid4()),
            Scope.INSPECTIONS_WRITE, Operation.UPDATE
        )
        assert decision.reason == DecisionReason.OUT_OF_TENANT

    def test_actor_without_organization_denied(self, make_actor):
        actor = make_actor('manager')
        decision = AccessDecisionService.decide(
            actor, resource_in(None), Scope.INSPECTIONS_READ, Operation.READ
        )
        assert decision.reason == DecisionReason.OUT_OF_TENANT

    def test_legacy_role_denied(self, make_actor, parent_org):
        actor = make_actor('sys_admin', organization=parent_org)
        decision = AccessDecisionService.decide(
            actor, resource_in(5), Scope.INSPECTIONS_READ, Operation.READ
        )
        assert decision.reason == DecisionReason.INSUFFICIENT_SCOPE

    def test_protected_target_beats_universal_scope(self, system_admin, protected_actor):
        decision = AccessDecisionService.decide(
            system_admin, ResourceDescriptor.for_actor(protected_actor),
            Scope.USERS_WRITE, Operation.UPDATE
        )
        assert not decision.allow
        assert decision.reason == DecisionReason.PROTECTED_RESOURCE

    def test_protected_target_by_email(self, system_admin, protected_config):
        resource = ResourceDescriptor(resource_type='actor', target_email=protected_config.email.upper())
        decision = AccessDecisionService.decide(system_admin, resource, Scope.USERS_WRITE, Operation.UPDATE)
        assert decision.reason == DecisionReason.PROTECTED_RESOURCE

    def test_reading_protected_identity_is_allowed(self, system_admin, protected_actor):
        decision = AccessDecisionService.decide(
            system_admin, ResourceDescriptor.for_actor(protected_actor),
            Scope.USERS_READ, Operation.READ
        )
        assert decision.allow

    def test_protected_identity_may_edit_itself(self, protected_actor):
        decision = AccessDecisionService.decide(
            protected_actor, ResourceDescriptor.for_actor(protected_actor),
            Scope.USERS_WRITE, Operation.UPDATE
        )
        assert decision.allow

    def test_operation_from_http_method(self):
        assert Operation.from_http_method('patch') == Operation.UPDATE
        assert not Operation.from_http_method('GET').is_mutating
        with pytest.raises(ValueError):
            Operation.from_http_method('TRACE')


@pytest.mark.django_db
class TestAuthorizeAudit:
    """Audit side effects of authorize()/enforce()."""

    def test_denial_is_recorded(self, child_org_admin, parent_org):
        decision = authorize(child_org_admin, resource_in(5), Scope.TEMPLATES_WRITE, Operation.UPDATE)

        assert not decision
        event = AuditEvent.objects.get()
        assert event.blocked
        assert event.actor_id == str(child_org_admin.id)
        assert event.target_id == '42'
        assert event.action_type == 'blocked_checklist_template_update'
        assert event.blocked_reason == 'out_of_tenant'

    def test_allowed_read_not_recorded(self, inspector):
        authorize(inspector, resource_in(5), Scope.INSPECTIONS_READ, Operation.READ)
        assert not AuditEvent.objects.exists()

    def test_allowed_mutation_recorded(self, org_admin, child_org):
        AccessDecisionService.authorize(
            org_admin, resource_in(7), Scope.TEMPLATES_WRITE, Operation.UPDATE,
            old_value={'title': 'Old'}, new_value={'title': 'New'},
        )

        event = AuditEvent.objects.get()
        assert not event.blocked
        assert event.action_type == 'checklist_template_update'
        assert event.new_value == {'title': 'New'}
        assert event.metadata['reason'] == 'scope_in_tenant'

    def test_enforce_raises_matching_errors(self, client_actor, child_org_admin, system_admin,
                                            protected_actor, parent_org):
        with pytest.raises(ForbiddenInsufficientScope):
            AccessDecisionService.enforce(client_actor, resource_in(5), Scope.USERS_WRITE, Operation.UPDATE)
        with pytest.raises(ForbiddenOutOfTenant):
            AccessDecisionService.enforce(child_org_admin, resource_in(5), Scope.USERS_WRITE, Operation.UPDATE)
        with pytest.raises(ForbiddenProtectedResource):
            AccessDecisionService.enforce(
                system_admin, ResourceDescriptor.for_actor(protected_actor),
                Scope.USERS_WRITE, Operation.DELETE
            )
        assert AuditEvent.objects.blocked().count() == 3

    def test_scope_and_tenant_denials_share_message(self, client_actor, child_org_admin, parent_org):
        with pytest.raises(ForbiddenInsufficientScope) as scope_error:
            AccessDecisionService.enforce(client_actor, resource_in(5), Scope.USERS_WRITE, Operation.UPDATE)
        with pytest.raises(ForbiddenOutOfTenant) as tenant_error:
            AccessDecisionService.enforce(child_org_admin, resource_in(5), Scope.USERS_WRITE, Operation.UPDATE)
        assert scope_error.value.message == tenant_error.value.message


ORGANIZATION_IDS = st.one_of(st.none(), st.integers(min_value=1, max_value=10 ** 9))


@pytest.mark.django_db
@settings(max_examples=30, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(organization_id=ORGANIZATION_IDS, scope=st.sampled_from([s.value for s in Scope]),
       operation=st.sampled_from(list(Operation)))
def test_universal_scope_always_allowed(system_admin, organization_id, scope, operation):
    resource = resource_in(organization_id)
    assert AccessDecisionService.decide(system_admin, resource, scope, operation).allow


@pytest.mark.django_db
@settings(max_examples=30, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(role=st.text(min_size=1, max_size=20).filter(lambda value: value not in Role.values),
       organization_id=ORGANIZATION_IDS, scope=st.sampled_from([s.value for s in Scope]))
def test_unknown_role_always_denied(parent_org, role, organization_id, scope):
    actor = Actor(role=role, organization_id=parent_org.id, email='ghost@example.com')
    decision = AccessDecisionService.decide(actor, resource_in(organization_id), scope, Operation.READ)
    assert not decision.allow
