"""ORM models for the expense kernel."""

from expense_kernel.models.approval_rule import (
    ApprovalRuleApproverModel,
    ApprovalRuleModel,
)
from expense_kernel.models.expense import ExpenseModel
from expense_kernel.models.tenant import TenantModel, UserModel

__all__ = [
    "ApprovalRuleApproverModel",
    "ApprovalRuleModel",
    "ExpenseModel",
    "TenantModel",
    "UserModel",
]
