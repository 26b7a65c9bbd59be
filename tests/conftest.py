"""
Pytest fixtures for the expense approvals test suite.

Provides:
- Structured logging configuration and log capture
- A SQLite database file per test (same schema as PostgreSQL)
- DeterministicClock
- Tenant / user factories and pre-wired services

Environment Variables:
- DATABASE_URL: when set, tests marked ``postgres`` may use it.  All other
  tests run against a throwaway SQLite file under ``tmp_path``.
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from expense_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.domain.identity import TenantRecord, UserRecord, UserRole
from expense_kernel.exceptions import CurrencyConversionError
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from expense_kernel.services.expense_repository import ExpenseRepository
from expense_kernel.services.identity_store import IdentityStore
from expense_kernel.services.rule_repository import ApprovalRuleRepository
from expense_services.approval_rules import ApprovalRuleService
from expense_services.currency_service import CurrencyConverter, ExchangeRateCache
from expense_services.expense_lifecycle import ExpenseLifecycleCoordinator


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture expense_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.submit_expense(...)
            logs = captured_logs()
            assert any(r["message"] == "expense_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("expense_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database file with all tables, per test."""
    eng = init_engine_from_url(f"sqlite:///{tmp_path / 'expenses.db'}")
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    s = get_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


# =============================================================================
# Services
# =============================================================================


class FixedRateSource:
    """Rate source returning canned tables and counting fetches."""

    def __init__(self, tables: dict[str, dict[str, Decimal]] | None = None):
        self.tables = tables or {
            "EUR": {"USD": Decimal("1.10"), "GBP": Decimal("0.85")},
            "GBP": {"USD": Decimal("1.25"), "EUR": Decimal("1.17")},
            "INR": {"USD": Decimal("0.012")},
            "JPY": {"USD": Decimal("0.0067")},
        }
        self.calls: list[str] = []

    def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        self.calls.append(base_currency)
        if base_currency not in self.tables:
            raise CurrencyConversionError(base_currency, "*", "unavailable")
        return self.tables[base_currency]


@pytest.fixture
def rate_source() -> FixedRateSource:
    return FixedRateSource()


@pytest.fixture
def identity_store(session, deterministic_clock) -> IdentityStore:
    return IdentityStore(session, deterministic_clock)


@pytest.fixture
def rule_repository(session, deterministic_clock) -> ApprovalRuleRepository:
    return ApprovalRuleRepository(session, deterministic_clock)


@pytest.fixture
def expense_repository(session, deterministic_clock) -> ExpenseRepository:
    return ExpenseRepository(session, deterministic_clock)


@pytest.fixture
def coordinator_factory(
    session, identity_store, rule_repository, expense_repository,
    rate_source, deterministic_clock,
):
    """Build a coordinator; override collaborators per test."""

    def _make(**overrides) -> ExpenseLifecycleCoordinator:
        kwargs = dict(
            session=session,
            identity=identity_store,
            rules=rule_repository,
            expenses=expense_repository,
            converter=CurrencyConverter(rate_source, ExchangeRateCache()),
            receipt_parser=None,
            notifier=None,
            clock=deterministic_clock,
        )
        kwargs.update(overrides)
        return ExpenseLifecycleCoordinator(**kwargs)

    return _make


@pytest.fixture
def coordinator(coordinator_factory) -> ExpenseLifecycleCoordinator:
    return coordinator_factory()


@pytest.fixture
def rule_service(session, identity_store, rule_repository) -> ApprovalRuleService:
    return ApprovalRuleService(session, identity_store, rule_repository)


# =============================================================================
# Identity factories
# =============================================================================


@pytest.fixture
def company(identity_store, session) -> tuple[TenantRecord, UserRecord]:
    """A USD company with its admin."""
    tenant, admin = identity_store.create_tenant_with_admin(
        company_name="Acme Corp",
        base_currency="USD",
        admin_name="Ada Admin",
        admin_email="admin@acme.test",
    )
    session.commit()
    return tenant, admin


@pytest.fixture
def tenant(company) -> TenantRecord:
    return company[0]


@pytest.fixture
def admin(company) -> UserRecord:
    return company[1]


@pytest.fixture
def make_user(identity_store, session, tenant):
    """Factory: add a user to the test tenant and commit."""
    counter = {"n": 0}

    def _make(
        role: UserRole = UserRole.EMPLOYEE,
        manager_id: UUID | None = None,
        name: str | None = None,
        tenant_id: UUID | None = None,
    ) -> UserRecord:
        counter["n"] += 1
        n = counter["n"]
        user = identity_store.add_user(
            tenant_id or tenant.tenant_id,
            name=name or f"{role.value.title()} {n}",
            email=f"{role.value}{n}@acme.test",
            role=role,
            manager_id=manager_id,
        )
        session.commit()
        return user

    return _make


@pytest.fixture
def manager(make_user) -> UserRecord:
    return make_user(UserRole.MANAGER, name="Mia Manager")


@pytest.fixture
def employee(make_user) -> UserRecord:
    """Employee without a manager."""
    return make_user(UserRole.EMPLOYEE, name="Eli Employee")
