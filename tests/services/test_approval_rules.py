"""
Tests for ApprovalRuleService: admin-only rule administration.

Tests cover:
- Admins can create, update, list, get and delete rules (committed)
- Managers and employees are refused with RoleNotPermittedError
- Users of another tenant are reported as not found
- Failures roll back and are logged
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from expense_kernel.domain.approval import RuleApprover, RuleConditions, RuleDraft
from expense_kernel.exceptions import (
    InvalidApproverError,
    RoleNotPermittedError,
    UserNotFoundError,
)


def make_draft(approver_id, name: str = "Over 1000") -> RuleDraft:
    return RuleDraft(
        name=name,
        approvers=(RuleApprover(approver_id, 1),),
        conditions=RuleConditions(min_amount=Decimal("1000")),
    )


class TestAdminAccess:

    def test_admin_crud_round(self, rule_service, rule_repository, tenant, admin, manager):
        rule = rule_service.create_rule(tenant.tenant_id, admin.user_id, make_draft(manager.user_id))

        assert [r.rule_id for r in rule_service.list_rules(tenant.tenant_id, admin.user_id)] == [
            rule.rule_id
        ]

        updated = rule_service.update_rule(
            tenant.tenant_id, admin.user_id, rule.rule_id, name="Over 2000",
        )
        assert updated.name == "Over 2000"
        assert rule_service.get_rule(tenant.tenant_id, admin.user_id, rule.rule_id).name == (
            "Over 2000"
        )

        rule_service.delete_rule(tenant.tenant_id, admin.user_id, rule.rule_id)
        assert rule_repository.list_rules(tenant.tenant_id) == []

    def test_create_is_committed(self, rule_service, session, tenant, admin, manager):
        rule = rule_service.create_rule(tenant.tenant_id, admin.user_id, make_draft(manager.user_id))

        session.rollback()

        assert rule_service.get_rule(tenant.tenant_id, admin.user_id, rule.rule_id)


class TestNonAdminRefused:

    def test_manager_cannot_create(self, rule_service, tenant, manager):
        with pytest.raises(RoleNotPermittedError) as exc_info:
            rule_service.create_rule(tenant.tenant_id, manager.user_id, make_draft(manager.user_id))

        assert exc_info.value.code == "ROLE_NOT_PERMITTED"

    def test_employee_cannot_list(self, rule_service, tenant, employee):
        with pytest.raises(RoleNotPermittedError):
            rule_service.list_rules(tenant.tenant_id, employee.user_id)

    def test_foreign_admin_is_unknown(self, rule_service, identity_store, session, tenant):
        _, other_admin = identity_store.create_tenant_with_admin(
            "Other Co", "EUR", "Olga", "olga@other.test",
        )
        session.commit()

        with pytest.raises(UserNotFoundError):
            rule_service.list_rules(tenant.tenant_id, other_admin.user_id)

    def test_unknown_actor(self, rule_service, tenant):
        with pytest.raises(UserNotFoundError):
            rule_service.list_rules(tenant.tenant_id, uuid4())


class TestFailureHandling:

    def test_invalid_approver_rolls_back_and_logs(
        self, rule_service, rule_repository, tenant, admin, employee, captured_logs,
    ):
        with pytest.raises(InvalidApproverError):
            rule_service.create_rule(tenant.tenant_id, admin.user_id, make_draft(employee.user_id))

        assert rule_repository.list_rules(tenant.tenant_id) == []
        failures = [r for r in captured_logs() if r["message"] == "rule_operation_failed"]
        assert failures
        assert failures[0]["exc_type"] == "InvalidApproverError"
        assert failures[0]["action"] == "create approval rules"
