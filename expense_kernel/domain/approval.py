"""
Approval domain types (``expense_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow engine: approval rules and
their matching conditions, the per-expense workflow instance with its
approver slots, and the transition result produced by the engine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Rule approvers are kept sorted ascending by ``order``; the workflow slot
  order is that order.
* A ``WorkflowInstance`` is a snapshot: the sequencing policy and the
  approver list are copied from the rule at build time, so editing a rule
  never reaches into in-flight expenses.
* Slot states ``approved`` and ``rejected`` are terminal per slot.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from expense_kernel.domain.expense import ExpenseCategory, ExpenseStatus


# =========================================================================
# Enumerations
# =========================================================================


class SequenceType(str, Enum):
    """How individual approver decisions aggregate into an outcome."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    PERCENTAGE = "percentage"
    ANY_ONE = "any_one"


class SlotStatus(str, Enum):
    """State of one approver's decision within a workflow."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_SLOT_STATUSES: frozenset[SlotStatus] = frozenset({
    SlotStatus.APPROVED,
    SlotStatus.REJECTED,
})


class ApprovalDecision(str, Enum):
    """Decision types that an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"


class WorkflowSource(str, Enum):
    """Where a workflow instance came from at submission time."""

    RULE = "rule"
    MANAGER_FALLBACK = "manager_fallback"
    EMPTY = "empty"


ADMIN_OVERRIDE_COMMENT = "Admin override approval"


# =========================================================================
# Rule Types
# =========================================================================


@dataclass(frozen=True)
class RuleConditions:
    """Matching predicate of an approval rule.

    ``max_amount=None`` means unbounded.  An empty ``categories`` set
    matches every category.  ``departments`` is stored but never evaluated
    by the matcher.
    """

    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None
    categories: frozenset[ExpenseCategory] = frozenset()
    departments: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleApprover:
    """An approver position within a rule. ``order`` starts at 1."""

    approver_id: UUID
    order: int


@dataclass(frozen=True)
class ApprovalRule:
    """A tenant-scoped approval policy template.

    ``priority`` only affects listing order; the matcher walks rules in
    listing order (priority desc, then creation time desc) and the first
    match wins.
    """

    rule_id: UUID
    tenant_id: UUID
    name: str
    approvers: tuple[RuleApprover, ...]
    sequence_type: SequenceType = SequenceType.SEQUENTIAL
    min_approval_percentage: int = 100
    conditions: RuleConditions = field(default_factory=RuleConditions)
    description: str = ""
    is_active: bool = True
    priority: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RuleDraft:
    """Caller-supplied fields for creating a rule (no identity yet)."""

    name: str
    approvers: tuple[RuleApprover, ...]
    sequence_type: SequenceType = SequenceType.SEQUENTIAL
    min_approval_percentage: int = 100
    conditions: RuleConditions = field(default_factory=RuleConditions)
    description: str = ""
    is_active: bool = True
    priority: int = 0


# =========================================================================
# Workflow Instance
# =========================================================================


@dataclass(frozen=True)
class ApproverSlot:
    """One approver's decision record within a workflow instance."""

    approver_id: UUID
    status: SlotStatus = SlotStatus.PENDING
    comments: str = ""
    decided_at: datetime | None = None
    reason: str = ""

    @property
    def is_pending(self) -> bool:
        return self.status == SlotStatus.PENDING

    def decide(
        self, status: SlotStatus, comments: str, decided_at: datetime, reason: str = "",
    ) -> ApproverSlot:
        return replace(
            self, status=status, comments=comments, decided_at=decided_at, reason=reason,
        )


@dataclass(frozen=True)
class WorkflowInstance:
    """Per-expense approval workflow embedded in the expense.

    ``current_step`` is meaningful only under ``sequential``.
    """

    sequence_type: SequenceType = SequenceType.SEQUENTIAL
    min_approval_percentage: int = 100
    current_step: int = 0
    total_steps: int = 0
    approvers: tuple[ApproverSlot, ...] = ()
    completed_at: datetime | None = None
    source: WorkflowSource = WorkflowSource.EMPTY
    rule_id: UUID | None = None

    @property
    def is_empty(self) -> bool:
        return not self.approvers

    @property
    def approved_count(self) -> int:
        return sum(1 for s in self.approvers if s.status == SlotStatus.APPROVED)

    @property
    def rejected_count(self) -> int:
        return sum(1 for s in self.approvers if s.status == SlotStatus.REJECTED)

    @property
    def pending_approver_ids(self) -> tuple[UUID, ...]:
        return tuple(s.approver_id for s in self.approvers if s.is_pending)

    def with_slot(self, index: int, slot: ApproverSlot) -> WorkflowInstance:
        slots = list(self.approvers)
        slots[index] = slot
        return replace(self, approvers=tuple(slots))


# =========================================================================
# Transition Result
# =========================================================================


@dataclass(frozen=True)
class WorkflowTransition:
    """Result of applying one decision (or an override) to a workflow.

    The caller persists ``workflow`` and the status fields together or not
    at all.
    """

    workflow: WorkflowInstance
    status: ExpenseStatus
    completed: bool = False
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    reason: str = ""
