"""
Module: expense_kernel.models.expense
Responsibility: ORM persistence for expenses with their embedded approval
    workflow.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily inside the conversion helpers).

Invariants enforced:
    - status is one of pending/approved/rejected/partially_approved
      (DB check constraint).
    - The approval workflow is embedded as one JSON document, so a decision
      rewrites slot states and expense status in a single row update.
    - ``version`` increments on every decision; decision writes are
      conditional on the version read (see ExpenseRepository).
    - original_*, base_* and exchange_rate are written once at submission.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import RATE_TYPE, TimestampedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import WorkflowInstance
    from expense_kernel.domain.expense import Expense, ReceiptData


# =============================================================================
# Embedded document (de)serialization
# =============================================================================


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def workflow_to_document(workflow: WorkflowInstance) -> dict[str, Any]:
    """Serialize a workflow instance to its JSON document form."""
    return {
        "sequence_type": workflow.sequence_type.value,
        "min_approval_percentage": workflow.min_approval_percentage,
        "current_step": workflow.current_step,
        "total_steps": workflow.total_steps,
        "approvers": [
            {
                "approver_id": str(slot.approver_id),
                "status": slot.status.value,
                "comments": slot.comments,
                "decided_at": slot.decided_at.isoformat() if slot.decided_at else None,
                "reason": slot.reason,
            }
            for slot in workflow.approvers
        ],
        "completed_at": workflow.completed_at.isoformat() if workflow.completed_at else None,
        "source": workflow.source.value,
        "rule_id": str(workflow.rule_id) if workflow.rule_id else None,
    }


def workflow_from_document(doc: dict[str, Any]) -> WorkflowInstance:
    """Rebuild a workflow instance from its JSON document form."""
    from expense_kernel.domain.approval import (
        ApproverSlot,
        SequenceType,
        SlotStatus,
        WorkflowInstance,
        WorkflowSource,
    )

    return WorkflowInstance(
        sequence_type=SequenceType(doc.get("sequence_type", "sequential")),
        min_approval_percentage=int(doc.get("min_approval_percentage", 100)),
        current_step=int(doc.get("current_step", 0)),
        total_steps=int(doc.get("total_steps", 0)),
        approvers=tuple(
            ApproverSlot(
                approver_id=UUID(s["approver_id"]),
                status=SlotStatus(s["status"]),
                comments=s.get("comments") or "",
                decided_at=_dt(s.get("decided_at")),
                reason=s.get("reason") or "",
            )
            for s in doc.get("approvers", ())
        ),
        completed_at=_dt(doc.get("completed_at")),
        source=WorkflowSource(doc.get("source", "empty")),
        rule_id=UUID(doc["rule_id"]) if doc.get("rule_id") else None,
    )


def receipt_to_document(receipt: ReceiptData | None) -> dict[str, Any] | None:
    if receipt is None:
        return None
    return {
        "merchant": receipt.merchant,
        "amount": str(receipt.amount) if receipt.amount is not None else None,
        "currency": receipt.currency,
        "date": receipt.receipt_date.isoformat() if receipt.receipt_date else None,
        "category": receipt.category.value if receipt.category else None,
        "items": list(receipt.items),
        "raw_text": receipt.raw_text,
    }


def receipt_from_document(doc: dict[str, Any] | None) -> ReceiptData | None:
    if doc is None:
        return None
    from expense_kernel.domain.expense import ExpenseCategory, ReceiptData

    return ReceiptData(
        merchant=doc.get("merchant"),
        amount=Decimal(doc["amount"]) if doc.get("amount") is not None else None,
        currency=doc.get("currency"),
        receipt_date=date.fromisoformat(doc["date"]) if doc.get("date") else None,
        category=ExpenseCategory(doc["category"]) if doc.get("category") else None,
        items=tuple(doc.get("items") or ()),
        raw_text=doc.get("raw_text") or "",
    )


# =============================================================================
# Model
# =============================================================================


class ExpenseModel(TimestampedBase):
    """Persistent expense with embedded approval workflow."""

    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'partially_approved')",
            name="ck_expenses_valid_status",
        ),
        CheckConstraint("original_amount > 0", name="ck_expenses_positive_amount"),
        Index("ix_expenses_tenant_status", "tenant_id", "status"),
        Index("ix_expenses_submitter_status", "submitter_id", "status"),
        Index("ix_expenses_date", "expense_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("tenants.id"), nullable=False,
    )
    submitter_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_by: Mapped[str] = mapped_column(String(50), nullable=False)

    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    original_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(RATE_TYPE, nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    approval_workflow: Mapped[dict] = mapped_column(JSON, nullable=False)
    rejection_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    receipt: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<Expense {self.id} {self.base_amount} {self.base_currency} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> Expense:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.expense import (
            Expense as ExpenseDTO,
            ExpenseCategory,
            ExpenseStatus,
        )

        return ExpenseDTO(
            expense_id=self.id,
            tenant_id=self.tenant_id,
            submitter_id=self.submitter_id,
            description=self.description,
            category=ExpenseCategory(self.category),
            expense_date=self.expense_date,
            paid_by=self.paid_by,
            original_amount=Decimal(self.original_amount),
            original_currency=self.original_currency,
            base_amount=Decimal(self.base_amount),
            base_currency=self.base_currency,
            exchange_rate=Decimal(self.exchange_rate),
            approval_workflow=workflow_from_document(self.approval_workflow),
            status=ExpenseStatus(self.status),
            rejection_reason=self.rejection_reason,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            receipt=receipt_from_document(self.receipt),
            created_at=self.created_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Expense) -> ExpenseModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.expense_id,
            tenant_id=dto.tenant_id,
            submitter_id=dto.submitter_id,
            description=dto.description,
            category=dto.category.value,
            expense_date=dto.expense_date,
            paid_by=dto.paid_by,
            original_amount=dto.original_amount,
            original_currency=dto.original_currency,
            base_amount=dto.base_amount,
            base_currency=dto.base_currency,
            exchange_rate=dto.exchange_rate,
            status=dto.status.value,
            approval_workflow=workflow_to_document(dto.approval_workflow),
            rejection_reason=dto.rejection_reason,
            approved_by=dto.approved_by,
            approved_at=dto.approved_at,
            receipt=receipt_to_document(dto.receipt),
            created_at=dto.created_at,
            updated_at=dto.created_at,
            version=dto.version,
        )
