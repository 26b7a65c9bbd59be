"""
Module: expense_engines
Responsibility:
    Package entrypoint re-exporting the pure approval engines: rule
    matching, workflow building and the workflow state machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain/ (and kernel exceptions).
    MUST NOT import expense_services.

Invariants enforced:
    - Purity: engines never read the clock.  Timestamps are parameters.
    - Determinism: identical inputs always produce identical outputs.
"""

from expense_engines.rule_matcher import match_rule, rule_matches
from expense_engines.workflow import (
    CompletionCheck,
    apply_admin_override,
    apply_approval,
    apply_rejection,
    evaluate_completion,
    find_pending_slot,
    is_eligible_approver,
    record_decision,
)
from expense_engines.workflow_builder import build_workflow, first_notifiable_approvers

__all__ = [
    "CompletionCheck",
    "apply_admin_override",
    "apply_approval",
    "apply_rejection",
    "build_workflow",
    "evaluate_completion",
    "find_pending_slot",
    "first_notifiable_approvers",
    "is_eligible_approver",
    "match_rule",
    "record_decision",
    "rule_matches",
]
