"""
Pure domain layer.

Immutable value objects with NO dependencies on the ORM, the database,
the system clock or any I/O.
"""

from expense_kernel.domain.approval import (
    ADMIN_OVERRIDE_COMMENT,
    ApprovalDecision,
    ApprovalRule,
    ApproverSlot,
    RuleApprover,
    RuleConditions,
    RuleDraft,
    SequenceType,
    SlotStatus,
    WorkflowInstance,
    WorkflowSource,
    WorkflowTransition,
)
from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from expense_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from expense_kernel.domain.expense import (
    CurrencyConversion,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    ExpenseSubmission,
    ReceiptData,
    ReceiptUpload,
    SubmissionResult,
)
from expense_kernel.domain.identity import TenantRecord, UserRecord, UserRole

__all__ = [
    "ADMIN_OVERRIDE_COMMENT",
    "ApprovalDecision",
    "ApprovalRule",
    "ApproverSlot",
    "Clock",
    "CurrencyConversion",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "Expense",
    "ExpenseCategory",
    "ExpenseStatus",
    "ExpenseSubmission",
    "ReceiptData",
    "ReceiptUpload",
    "RuleApprover",
    "RuleConditions",
    "RuleDraft",
    "SequenceType",
    "SlotStatus",
    "SubmissionResult",
    "SystemClock",
    "TenantRecord",
    "UserRecord",
    "UserRole",
    "WorkflowInstance",
    "WorkflowSource",
    "WorkflowTransition",
]
