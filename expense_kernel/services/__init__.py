"""Kernel services: flush-only repositories over the ORM models."""

from expense_kernel.services.expense_repository import ExpenseRepository
from expense_kernel.services.identity_store import IdentityStore
from expense_kernel.services.rule_repository import ApprovalRuleRepository

__all__ = [
    "ApprovalRuleRepository",
    "ExpenseRepository",
    "IdentityStore",
]
