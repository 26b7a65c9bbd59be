"""
Tests for company signup and user onboarding.

Tests cover:
- IdentityService.signup: company + admin created atomically
- IdentityStore validation: currency, email normalization, duplicates
- IdentityService.invite_user: admin-only, manager must share the tenant,
  invitation sent after commit
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from expense_kernel.domain.identity import UserRole
from expense_kernel.exceptions import (
    DuplicateEmailError,
    InvalidCurrencyError,
    RoleNotPermittedError,
    TenantNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from expense_services.identity import IdentityService


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def identity_service(session, identity_store, notifier):
    return IdentityService(session, identity_store, notifier=notifier)


class TestSignup:

    def test_creates_company_and_admin(self, identity_service, identity_store):
        tenant, admin = identity_service.signup("Globex", "eur", "Gina", " Gina@Globex.Test ")

        assert tenant.base_currency == "EUR"
        assert admin.role == UserRole.ADMIN
        assert admin.tenant_id == tenant.tenant_id
        assert admin.email == "gina@globex.test"
        assert identity_store.find_tenant(tenant.tenant_id).name == "Globex"

    def test_invalid_currency(self, identity_service):
        with pytest.raises(InvalidCurrencyError) as exc_info:
            identity_service.signup("Globex", "XYZ", "Gina", "gina@globex.test")

        assert exc_info.value.field_errors[0]["field"] == "base_currency"

    def test_duplicate_email_creates_nothing(self, identity_service, identity_store, admin):
        with pytest.raises(DuplicateEmailError):
            identity_service.signup("Globex", "USD", "Copy", admin.email)

        assert len(identity_store.list_users(admin.tenant_id)) == 1

    def test_blank_names(self, identity_service):
        with pytest.raises(ValidationError) as exc_info:
            identity_service.signup(" ", "USD", "", "x@y.test")

        assert {e["field"] for e in exc_info.value.field_errors} == {"company_name", "name"}

    def test_email_requires_at_sign(self, identity_service):
        with pytest.raises(ValidationError):
            identity_service.signup("Globex", "USD", "Gina", "not-an-email")


class TestInviteUser:

    def test_admin_invites_employee_with_manager(
        self, identity_service, identity_store, notifier, tenant, admin, manager,
    ):
        user = identity_service.invite_user(
            tenant.tenant_id, admin.user_id, "Nina", "nina@acme.test",
            role=UserRole.EMPLOYEE, manager_id=manager.user_id, department="Sales",
        )

        assert user.manager_id == manager.user_id
        assert user.department == "Sales"
        assert identity_store.find_user(user.user_id).email == "nina@acme.test"
        notifier.send_invitation.assert_called_once_with(
            user, tenant.name, invited_by=admin.name,
        )

    def test_manager_cannot_invite(self, identity_service, notifier, tenant, manager):
        with pytest.raises(RoleNotPermittedError):
            identity_service.invite_user(tenant.tenant_id, manager.user_id, "Nina", "nina@acme.test")

        notifier.send_invitation.assert_not_called()

    def test_manager_from_other_tenant_rejected(
        self, identity_service, identity_store, session, tenant, admin,
    ):
        _, other_admin = identity_store.create_tenant_with_admin(
            "Other Co", "EUR", "Olga", "olga@other.test",
        )
        session.commit()

        with pytest.raises(ValidationError) as exc_info:
            identity_service.invite_user(
                tenant.tenant_id, admin.user_id, "Nina", "nina@acme.test",
                manager_id=other_admin.user_id,
            )

        assert exc_info.value.field_errors[0]["field"] == "manager_id"

    def test_actor_from_other_tenant(self, identity_service, identity_store, session, tenant):
        _, other_admin = identity_store.create_tenant_with_admin(
            "Other Co", "EUR", "Olga", "olga@other.test",
        )
        session.commit()

        with pytest.raises(UserNotFoundError):
            identity_service.invite_user(
                tenant.tenant_id, other_admin.user_id, "Nina", "nina@acme.test",
            )


class TestIdentityStore:

    def test_add_user_unknown_tenant(self, identity_store):
        with pytest.raises(TenantNotFoundError):
            identity_store.add_user(uuid4(), "Nina", "nina@acme.test")

    def test_list_users_filters_by_role(self, identity_store, tenant, admin, manager, employee):
        managers = identity_store.list_users(tenant.tenant_id, role=UserRole.MANAGER)

        assert [u.user_id for u in managers] == [manager.user_id]
        assert len(identity_store.list_users(tenant.tenant_id)) == 3

    def test_list_users_direct_reports(self, identity_store, tenant, manager, employee, make_user):
        report = make_user(UserRole.EMPLOYEE, manager_id=manager.user_id)

        reports = identity_store.list_users(tenant.tenant_id, manager_id=manager.user_id)

        assert [u.user_id for u in reports] == [report.user_id]

    def test_find_unknown_user(self, identity_store):
        with pytest.raises(UserNotFoundError):
            identity_store.find_user(uuid4())
