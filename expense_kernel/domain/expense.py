"""
Expense domain types (``expense_kernel.domain.expense``).

Pure value objects for submitted expenses.  Monetary fields are captured
twice: as entered (``original_*``) and converted once, at submission, into
the tenant's base currency (``base_*`` and ``exchange_rate``).  Nothing
after submission recomputes the conversion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from expense_kernel.domain.approval import WorkflowInstance


class ExpenseCategory(str, Enum):
    """Expense categories accepted at submission."""

    FOOD = "Food"
    TRANSPORT = "Transport"
    ACCOMMODATION = "Accommodation"
    ENTERTAINMENT = "Entertainment"
    OFFICE_SUPPLIES = "Office Supplies"
    TRAVEL = "Travel"
    OTHER = "Other"


class ExpenseStatus(str, Enum):
    """Externally visible expense status.

    ``PARTIALLY_APPROVED`` is reserved: no transition produces it.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"


TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})


@dataclass(frozen=True)
class ExpenseSubmission:
    """Raw submission input, before validation and conversion."""

    description: str
    category: str
    expense_date: date | str
    amount: Decimal | str | float
    currency: str
    paid_by: str


@dataclass(frozen=True)
class ReceiptUpload:
    """An uploaded receipt file."""

    content: bytes
    content_type: str
    filename: str = ""


@dataclass(frozen=True)
class ReceiptData:
    """Best-effort fields extracted from a receipt image."""

    merchant: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    receipt_date: date | None = None
    category: ExpenseCategory | None = None
    items: tuple[dict[str, Any], ...] = ()
    raw_text: str = ""


@dataclass(frozen=True)
class CurrencyConversion:
    """Outcome of converting a submitted amount into the base currency."""

    original_amount: Decimal
    original_currency: str
    converted_amount: Decimal
    converted_currency: str
    rate: Decimal


@dataclass(frozen=True)
class Expense:
    """Immutable snapshot of a persisted expense."""

    expense_id: UUID
    tenant_id: UUID
    submitter_id: UUID
    description: str
    category: ExpenseCategory
    expense_date: date
    paid_by: str
    original_amount: Decimal
    original_currency: str
    base_amount: Decimal
    base_currency: str
    exchange_rate: Decimal
    approval_workflow: WorkflowInstance
    status: ExpenseStatus = ExpenseStatus.PENDING
    rejection_reason: str = ""
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    receipt: ReceiptData | None = None
    created_at: datetime | None = None
    version: int = 1

    @property
    def is_pending(self) -> bool:
        return self.status == ExpenseStatus.PENDING


@dataclass(frozen=True)
class SubmissionResult:
    """Result of a submission: the expense plus non-fatal warnings."""

    expense: Expense
    warnings: tuple[str, ...] = field(default_factory=tuple)
