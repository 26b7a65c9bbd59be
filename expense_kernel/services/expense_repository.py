"""
ExpenseRepository -- persistence for expenses and atomic decision writes.

Responsibility:
    Inserts submitted expenses, reads them back as frozen ``Expense`` DTOs,
    and persists workflow transitions with a single conditional UPDATE.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only: the calling
    service owns commit/rollback.

Invariants enforced:
    - At most one decision applies per read version.  ``save_transition``
      updates the row only if it is still pending at the version the
      caller read, and bumps the version in the same statement.
    - Monetary conversion fields are never part of a decision write.
    - Expenses of another tenant are invisible (treated as missing).

Failure modes:
    - ExpenseNotFoundError when the expense is absent, foreign, or (for
      ``get_pending``) no longer pending.
    - DecisionConflictError when the conditional update matches zero rows.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.expense import (
    Expense,
    ExpenseCategory,
    ExpenseStatus,
)
from expense_kernel.domain.approval import WorkflowTransition
from expense_kernel.exceptions import DecisionConflictError, ExpenseNotFoundError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.expense import ExpenseModel, workflow_to_document

logger = get_logger("services.expense_repository")


class ExpenseRepository:
    """Tenant-scoped access to expenses."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def add(self, expense: Expense) -> Expense:
        """Insert a newly submitted expense and return the stored snapshot."""
        model = ExpenseModel.from_dto(expense)
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    def get(self, tenant_id: UUID, expense_id: UUID) -> Expense:
        """
        Get an expense of the tenant in any status.

        Raises:
            ExpenseNotFoundError: Missing or owned by another tenant.
        """
        stmt = select(ExpenseModel).where(
            ExpenseModel.id == expense_id,
            ExpenseModel.tenant_id == tenant_id,
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ExpenseNotFoundError(
                str(expense_id), message=f"Expense not found: {expense_id}",
            )
        return model.to_dto()

    def get_pending(self, tenant_id: UUID, expense_id: UUID) -> Expense:
        """
        Get an expense that is still awaiting decisions.

        A non-pending expense is reported exactly like a missing one.

        Raises:
            ExpenseNotFoundError: Missing, foreign, or not pending.
        """
        stmt = select(ExpenseModel).where(
            ExpenseModel.id == expense_id,
            ExpenseModel.tenant_id == tenant_id,
            ExpenseModel.status == ExpenseStatus.PENDING.value,
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ExpenseNotFoundError(str(expense_id))
        return model.to_dto()

    def list_expenses(
        self,
        tenant_id: UUID,
        status: ExpenseStatus | None = None,
        category: ExpenseCategory | None = None,
        submitter_id: UUID | None = None,
        submitter_ids: Collection[UUID] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Expense]:
        """
        Expenses of the tenant, newest first, optionally filtered.

        ``submitter_ids`` restricts to a set of submitters (an empty set
        matches nothing).  The date range is inclusive on ``expense_date``.
        """
        stmt = select(ExpenseModel).where(ExpenseModel.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(ExpenseModel.status == ExpenseStatus(status).value)
        if category is not None:
            stmt = stmt.where(ExpenseModel.category == ExpenseCategory(category).value)
        if submitter_id is not None:
            stmt = stmt.where(ExpenseModel.submitter_id == submitter_id)
        if submitter_ids is not None:
            stmt = stmt.where(ExpenseModel.submitter_id.in_(list(submitter_ids)))
        if start_date is not None:
            stmt = stmt.where(ExpenseModel.expense_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(ExpenseModel.expense_date <= end_date)
        stmt = stmt.order_by(ExpenseModel.created_at.desc())
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def list_pending_for_approver(
        self, tenant_id: UUID, approver_id: UUID,
    ) -> list[Expense]:
        """Pending expenses on which ``approver_id`` holds a pending slot."""
        pending = self.list_expenses(tenant_id, status=ExpenseStatus.PENDING)
        return [
            e for e in pending
            if approver_id in e.approval_workflow.pending_approver_ids
        ]

    def save_transition(
        self, expense: Expense, transition: WorkflowTransition,
    ) -> Expense:
        """
        Persist a workflow transition if nobody else decided first.

        The UPDATE is conditioned on tenant, pending status and the version
        ``expense`` was read at.  Slot states, expense status and completion
        metadata are written together in one statement.

        Raises:
            DecisionConflictError: The row changed since it was read.
        """
        values = {
            "approval_workflow": workflow_to_document(transition.workflow),
            "status": transition.status.value,
            "version": ExpenseModel.version + 1,
            "updated_at": self._clock.now(),
        }
        if transition.approved_by is not None:
            values["approved_by"] = transition.approved_by
            values["approved_at"] = transition.approved_at
        if transition.rejection_reason is not None:
            values["rejection_reason"] = transition.rejection_reason

        stmt = (
            update(ExpenseModel)
            .where(
                ExpenseModel.id == expense.expense_id,
                ExpenseModel.tenant_id == expense.tenant_id,
                ExpenseModel.status == ExpenseStatus.PENDING.value,
                ExpenseModel.version == expense.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount != 1:
            logger.warning(
                "decision_conflict",
                extra={
                    "expense_id": str(expense.expense_id),
                    "expected_version": expense.version,
                },
            )
            raise DecisionConflictError(str(expense.expense_id), expense.version)

        self.session.expire_all()
        return self.get(expense.tenant_id, expense.expense_id)
