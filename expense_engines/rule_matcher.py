"""
expense_engines.rule_matcher -- Pure approval-rule selection.

Responsibility:
    Decide which of a tenant's approval rules governs an expense, given
    the expense amount (in base currency) and category.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain/ types.

Invariants enforced:
    - Rules are walked in the order given, which is the repository listing
      order (priority desc, then creation time desc).  First match wins.
    - Inactive rules never match, even if passed in.
    - ``departments`` conditions are never evaluated.

Failure modes:
    - Returns None when no rule matches; the workflow builder then falls
      back to the submitter's manager or an empty workflow.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from expense_kernel.domain.approval import ApprovalRule
from expense_kernel.domain.expense import ExpenseCategory


def rule_matches(
    rule: ApprovalRule,
    amount: Decimal,
    category: ExpenseCategory,
) -> bool:
    """Check a single rule's conditions against an expense.

    A rule matches if:
    1. It is active.
    2. ``min_amount <= amount``, and ``amount <= max_amount`` when a
       finite ``max_amount`` is set (both bounds inclusive).
    3. ``categories`` is empty, or contains ``category``.
    """
    if not rule.is_active:
        return False

    conditions = rule.conditions
    if amount < conditions.min_amount:
        return False
    max_amount = conditions.max_amount
    if max_amount is not None and max_amount.is_finite() and amount > max_amount:
        return False

    if conditions.categories and ExpenseCategory(category) not in conditions.categories:
        return False

    return True


def match_rule(
    rules: Iterable[ApprovalRule],
    amount: Decimal,
    category: ExpenseCategory,
) -> ApprovalRule | None:
    """Return the first rule (in the given order) whose conditions pass.

    Args:
        rules: Rules in repository listing order.
        amount: Expense amount in the tenant's base currency.
        category: Expense category.

    Returns:
        The governing rule, or None if no rule matches.
    """
    for rule in rules:
        if rule_matches(rule, amount, category):
            return rule
    return None
