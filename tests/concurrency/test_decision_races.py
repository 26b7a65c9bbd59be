"""
Concurrency tests for approval decisions.

Two decisions on the same expense must never both apply to the same
version: the conditional UPDATE (id, tenant, pending, version) lets exactly
one writer through and the loser gets DecisionConflictError with the row
untouched.

The SQLite tests interleave two sessions deterministically.  The threaded
test needs real row locking and only runs against PostgreSQL:

    DATABASE_URL=postgresql+psycopg://... pytest -m postgres
"""

import os
import threading
from decimal import Decimal

import pytest

from expense_engines.workflow import record_decision
from expense_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from expense_kernel.domain.approval import (
    ApprovalDecision,
    RuleApprover,
    RuleConditions,
    RuleDraft,
    SequenceType,
    SlotStatus,
)
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.domain.expense import ExpenseStatus, ExpenseSubmission
from expense_kernel.domain.identity import UserRole
from expense_kernel.exceptions import DecisionConflictError
from expense_kernel.services.expense_repository import ExpenseRepository
from expense_kernel.services.identity_store import IdentityStore
from expense_kernel.services.rule_repository import ApprovalRuleRepository
from expense_services.currency_service import CurrencyConverter, HttpRateSource
from expense_services.expense_lifecycle import ExpenseLifecycleCoordinator

SUBMISSION = ExpenseSubmission(
    description="Team dinner",
    category="Food",
    expense_date="2024-01-01",
    amount="240.00",
    currency="USD",
    paid_by="Card",
)


def seed_parallel_expense(session, clock):
    """Tenant with two managers on one parallel rule and an employee."""
    identity = IdentityStore(session, clock)
    tenant, admin = identity.create_tenant_with_admin(
        "Race Co", "USD", "Rae", "rae@race.test",
    )
    a = identity.add_user(tenant.tenant_id, "A", "a@race.test", UserRole.MANAGER)
    b = identity.add_user(tenant.tenant_id, "B", "b@race.test", UserRole.MANAGER)
    employee = identity.add_user(tenant.tenant_id, "E", "e@race.test")
    ApprovalRuleRepository(session, clock).create_rule(
        tenant.tenant_id,
        RuleDraft(
            name="Everyone",
            approvers=(RuleApprover(a.user_id, 1), RuleApprover(b.user_id, 2)),
            sequence_type=SequenceType.PARALLEL,
            conditions=RuleConditions(min_amount=Decimal("0")),
        ),
    )
    session.commit()
    return tenant, a, b, employee


class StaleReadRepository(ExpenseRepository):
    """Serves a snapshot captured before another writer committed."""

    stale = None

    def get_pending(self, tenant_id, expense_id):
        return self.stale


# =========================================================================
# Deterministic interleavings (SQLite)
# =========================================================================


class TestInterleavedDecisions:

    def test_loser_gets_conflict_and_row_is_untouched(
        self, session, coordinator, deterministic_clock,
    ):
        tenant, a, b, employee = seed_parallel_expense(session, deterministic_clock)
        expense = coordinator.submit_expense(tenant.tenant_id, employee.user_id, SUBMISSION).expense

        other = get_session()
        try:
            other_repo = ExpenseRepository(other, deterministic_clock)
            stale = other_repo.get_pending(tenant.tenant_id, expense.expense_id)
            assert stale.version == 1

            coordinator.approve_expense(tenant.tenant_id, expense.expense_id, a.user_id)

            transition = record_decision(
                stale, b.user_id, ApprovalDecision.APPROVE,
                decided_at=deterministic_clock.now(),
            )
            with pytest.raises(DecisionConflictError) as exc_info:
                other_repo.save_transition(stale, transition)
            other.rollback()

            assert exc_info.value.expected_version == 1
            fresh = other_repo.get(tenant.tenant_id, expense.expense_id)
            assert fresh.version == 2
            assert fresh.status == ExpenseStatus.PENDING
            assert [s.status for s in fresh.approval_workflow.approvers] == [
                SlotStatus.APPROVED, SlotStatus.PENDING,
            ]
        finally:
            other.close()

    def test_conflict_through_coordinator_rolls_back_and_logs(
        self, session, coordinator, coordinator_factory, deterministic_clock, captured_logs,
    ):
        tenant, a, b, employee = seed_parallel_expense(session, deterministic_clock)
        expense = coordinator.submit_expense(tenant.tenant_id, employee.user_id, SUBMISSION).expense

        stale_repo = StaleReadRepository(session, deterministic_clock)
        stale_repo.stale = coordinator.get_expense(
            tenant.tenant_id, expense.expense_id, employee.user_id,
        )
        coordinator.approve_expense(tenant.tenant_id, expense.expense_id, a.user_id)

        racing = coordinator_factory(expenses=stale_repo)
        with pytest.raises(DecisionConflictError):
            racing.approve_expense(tenant.tenant_id, expense.expense_id, b.user_id)

        stored = coordinator.get_expense(tenant.tenant_id, expense.expense_id, employee.user_id)
        assert stored.version == 2
        assert stored.approval_workflow.pending_approver_ids == (b.user_id,)
        messages = [r["message"] for r in captured_logs()]
        assert "decision_conflict" in messages
        assert "approval_decision_failed" in messages

    def test_retry_with_fresh_state_succeeds(
        self, session, coordinator, deterministic_clock,
    ):
        tenant, a, b, employee = seed_parallel_expense(session, deterministic_clock)
        expense = coordinator.submit_expense(tenant.tenant_id, employee.user_id, SUBMISSION).expense
        coordinator.approve_expense(tenant.tenant_id, expense.expense_id, a.user_id)

        final = coordinator.approve_expense(tenant.tenant_id, expense.expense_id, b.user_id)

        assert final.status == ExpenseStatus.APPROVED
        assert final.version == 3


# =========================================================================
# Real threads (PostgreSQL only)
# =========================================================================


@pytest.fixture
def pg_engine():
    url = os.environ.get("DATABASE_URL", "")
    if not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL must point at PostgreSQL")
    eng = init_engine_from_url(url)
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.mark.postgres
class TestThreadedDecisions:

    def test_concurrent_approvals_never_lose_an_update(self, pg_engine):
        clock = DeterministicClock()
        setup = get_session()
        tenant, a, b, employee = seed_parallel_expense(setup, clock)

        def make_coordinator(session):
            return ExpenseLifecycleCoordinator(
                session=session,
                identity=IdentityStore(session, clock),
                rules=ApprovalRuleRepository(session, clock),
                expenses=ExpenseRepository(session, clock),
                converter=CurrencyConverter(HttpRateSource()),
                clock=clock,
            )

        expense = make_coordinator(setup).submit_expense(
            tenant.tenant_id, employee.user_id, SUBMISSION,
        ).expense
        setup.close()

        barrier = threading.Barrier(2)
        outcomes: dict[str, str] = {}

        def decide(name, approver_id):
            session = get_session()
            try:
                barrier.wait()
                make_coordinator(session).approve_expense(
                    tenant.tenant_id, expense.expense_id, approver_id,
                )
                outcomes[name] = "ok"
            except DecisionConflictError:
                outcomes[name] = "conflict"
            finally:
                session.close()

        threads = [
            threading.Thread(target=decide, args=("a", a.user_id)),
            threading.Thread(target=decide, args=("b", b.user_id)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        check = get_session()
        try:
            stored = ExpenseRepository(check, clock).get(tenant.tenant_id, expense.expense_id)
        finally:
            check.close()

        successes = sum(1 for v in outcomes.values() if v == "ok")
        assert successes >= 1
        assert stored.version == 1 + successes
        assert stored.approval_workflow.approved_count == successes
