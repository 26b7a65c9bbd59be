"""
expense_engines.workflow_builder -- Build per-expense workflow instances.

Responsibility:
    Snapshot a matched rule (or the submitter's manager, or nothing) into
    the ``WorkflowInstance`` embedded in a new expense.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Slots follow the rule's approvers in ascending ``order``.
    - Sequencing policy and threshold are copied from the rule, so later
      rule edits never reach in-flight expenses.
    - No rule and no manager yields an empty workflow.  It stays pending
      until an administrator overrides it.
"""

from __future__ import annotations

from uuid import UUID

from expense_kernel.domain.approval import (
    ApprovalRule,
    ApproverSlot,
    SequenceType,
    WorkflowInstance,
    WorkflowSource,
)


def build_workflow(
    rule: ApprovalRule | None = None,
    fallback_manager_id: UUID | None = None,
) -> WorkflowInstance:
    """Build the workflow for a new expense.

    Args:
        rule: The matched rule, if any.  Takes precedence over the manager.
        fallback_manager_id: The submitter's manager, used when no rule
            matched.

    Returns:
        A workflow with every slot pending and ``current_step`` 0.
    """
    if rule is not None:
        slots = tuple(
            ApproverSlot(approver_id=a.approver_id)
            for a in sorted(rule.approvers, key=lambda a: a.order)
        )
        return WorkflowInstance(
            sequence_type=rule.sequence_type,
            min_approval_percentage=rule.min_approval_percentage,
            current_step=0,
            total_steps=len(slots),
            approvers=slots,
            source=WorkflowSource.RULE,
            rule_id=rule.rule_id,
        )

    if fallback_manager_id is not None:
        return WorkflowInstance(
            sequence_type=SequenceType.SEQUENTIAL,
            min_approval_percentage=100,
            current_step=0,
            total_steps=1,
            approvers=(ApproverSlot(approver_id=fallback_manager_id),),
            source=WorkflowSource.MANAGER_FALLBACK,
        )

    return WorkflowInstance(
        sequence_type=SequenceType.SEQUENTIAL,
        min_approval_percentage=100,
        current_step=0,
        total_steps=0,
        approvers=(),
        source=WorkflowSource.EMPTY,
    )


def first_notifiable_approvers(workflow: WorkflowInstance) -> tuple[UUID, ...]:
    """Approvers to notify when an expense is submitted.

    Sequential workflows only wait on the current step; every other policy
    waits on all pending slots at once.
    """
    if workflow.is_empty:
        return ()
    if workflow.sequence_type == SequenceType.SEQUENTIAL:
        slot = workflow.approvers[workflow.current_step]
        return (slot.approver_id,) if slot.is_pending else ()
    return workflow.pending_approver_ids
