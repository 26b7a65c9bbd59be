"""
expense_engines.workflow -- Pure approval workflow state machine.

Responsibility:
    Apply one approver decision (or an administrative override) to an
    expense's workflow and derive the resulting expense status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain/ types and kernel exceptions.

Invariants enforced:
    - Purity: no clock access.  ``decided_at`` is passed in by the caller.
    - No partial mutation: inputs are frozen; every operation returns a new
      ``WorkflowTransition`` that the caller persists whole or not at all.
    - Slot states approved/rejected are terminal; a slot is decided once.
    - Eligibility is "holds a pending slot", not "is the current step".
      Under ``sequential`` a later approver may decide early, but only
      ``approvers[current_step]`` is consulted for completion.
    - Completion policy per sequence type:
        sequential  -- current step approved: advance one step; complete
                       when the step reaches ``total_steps``.  A rejection
                       terminates immediately (separate rejection path).
        parallel    -- once every slot has responded: rejected if any slot
                       is rejected, else approved.
        percentage  -- approved once approved/total*100 >= threshold,
                       checked after every decision.  No rejection
                       short-circuit.
        any_one     -- approved on any approved slot.  No rejection
                       short-circuit.

Failure modes:
    - ExpenseNotPendingError if the expense is already decided.
    - ApproverNotEligibleError if the approver holds no pending slot.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    ADMIN_OVERRIDE_COMMENT,
    ApprovalDecision,
    SequenceType,
    SlotStatus,
    WorkflowInstance,
    WorkflowTransition,
)
from expense_kernel.domain.expense import Expense, ExpenseStatus
from expense_kernel.exceptions import ApproverNotEligibleError, ExpenseNotPendingError

ENGINE_NAME = "workflow"
ENGINE_VERSION = "1.0"


@dataclass(frozen=True)
class CompletionCheck:
    """Outcome of evaluating a workflow's completion predicate.

    ``workflow`` may differ from the input: under ``sequential`` an
    approved current step advances ``current_step``.
    """

    workflow: WorkflowInstance
    complete: bool
    forced_rejection: bool = False
    reason: str = ""


# =============================================================================
# Eligibility
# =============================================================================


def find_pending_slot(workflow: WorkflowInstance, approver_id: UUID) -> int | None:
    """Index of the approver's pending slot, or None."""
    for index, slot in enumerate(workflow.approvers):
        if slot.approver_id == approver_id and slot.is_pending:
            return index
    return None


def is_eligible_approver(workflow: WorkflowInstance, approver_id: UUID) -> bool:
    return find_pending_slot(workflow, approver_id) is not None


# =============================================================================
# Completion predicate
# =============================================================================


def evaluate_completion(workflow: WorkflowInstance) -> CompletionCheck:
    """Evaluate the completion rule of the workflow's sequence type.

    An empty workflow never completes here; only an administrative
    override resolves it.
    """
    if workflow.is_empty:
        return CompletionCheck(workflow, complete=False, reason="Workflow has no approvers")

    seq = workflow.sequence_type

    if seq == SequenceType.SEQUENTIAL:
        step = workflow.current_step
        if step >= len(workflow.approvers):
            return CompletionCheck(workflow, complete=False, reason="No current step")
        if workflow.approvers[step].status != SlotStatus.APPROVED:
            return CompletionCheck(
                workflow, complete=False, reason=f"Waiting on step {step + 1}",
            )
        advanced = replace(workflow, current_step=step + 1)
        if advanced.current_step >= advanced.total_steps:
            return CompletionCheck(advanced, complete=True, reason="All steps approved")
        return CompletionCheck(
            advanced,
            complete=False,
            reason=f"Step {step + 1} approved, advancing to step {step + 2}",
        )

    if seq == SequenceType.PARALLEL:
        if any(slot.is_pending for slot in workflow.approvers):
            return CompletionCheck(
                workflow,
                complete=False,
                reason=f"{len(workflow.pending_approver_ids)} approver(s) pending",
            )
        if workflow.rejected_count:
            return CompletionCheck(
                workflow,
                complete=True,
                forced_rejection=True,
                reason="All approvers responded with at least one rejection",
            )
        return CompletionCheck(workflow, complete=True, reason="All approvers approved")

    if seq == SequenceType.PERCENTAGE:
        total = len(workflow.approvers)
        approved = workflow.approved_count
        # approved/total*100 >= threshold, in integers
        if approved * 100 >= workflow.min_approval_percentage * total:
            return CompletionCheck(
                workflow,
                complete=True,
                reason=f"{approved}/{total} approvals meet {workflow.min_approval_percentage}%",
            )
        return CompletionCheck(
            workflow,
            complete=False,
            reason=f"{approved}/{total} approvals below {workflow.min_approval_percentage}%",
        )

    if seq == SequenceType.ANY_ONE:
        if workflow.approved_count:
            return CompletionCheck(workflow, complete=True, reason="An approver approved")
        return CompletionCheck(workflow, complete=False, reason="No approval yet")

    raise ValueError(f"Unknown sequence type: {seq}")


def _first_rejection_reason(workflow: WorkflowInstance) -> str:
    for slot in workflow.approvers:
        if slot.status == SlotStatus.REJECTED:
            return slot.reason or slot.comments
    return ""


def _complete(
    check: CompletionCheck,
    *,
    approver_id: UUID,
    decided_at: datetime,
    rejection_reason: str | None = None,
) -> WorkflowTransition:
    workflow = replace(check.workflow, completed_at=decided_at)
    if check.forced_rejection:
        return WorkflowTransition(
            workflow=workflow,
            status=ExpenseStatus.REJECTED,
            completed=True,
            rejection_reason=(
                rejection_reason
                if rejection_reason is not None
                else _first_rejection_reason(workflow)
            ),
            reason=check.reason,
        )
    return WorkflowTransition(
        workflow=workflow,
        status=ExpenseStatus.APPROVED,
        completed=True,
        approved_by=approver_id,
        approved_at=decided_at,
        reason=check.reason,
    )


# =============================================================================
# Decisions
# =============================================================================


def _require_slot(expense: Expense, approver_id: UUID) -> int:
    index = find_pending_slot(expense.approval_workflow, approver_id)
    if index is None:
        raise ApproverNotEligibleError(str(expense.expense_id), str(approver_id))
    return index


def _require_pending(expense: Expense) -> None:
    if expense.status != ExpenseStatus.PENDING:
        raise ExpenseNotPendingError(str(expense.expense_id), expense.status.value)


@traced_engine(ENGINE_NAME, ENGINE_VERSION, fingerprint_fields=("approver_id",))
def apply_approval(
    expense: Expense,
    *,
    approver_id: UUID,
    comments: str = "",
    decided_at: datetime,
) -> WorkflowTransition:
    """Mark the approver's slot approved, then run the completion check.

    On completion the expense becomes approved (or rejected when a
    parallel workflow had a rejection) and ``completed_at`` is stamped.
    ``approved_by`` and ``approved_at`` are stamped for approvals only.
    """
    _require_pending(expense)
    index = _require_slot(expense, approver_id)

    workflow = expense.approval_workflow
    slot = workflow.approvers[index].decide(SlotStatus.APPROVED, comments, decided_at)
    check = evaluate_completion(workflow.with_slot(index, slot))

    if not check.complete:
        return WorkflowTransition(
            workflow=check.workflow,
            status=ExpenseStatus.PENDING,
            reason=check.reason,
        )
    return _complete(check, approver_id=approver_id, decided_at=decided_at)


@traced_engine(ENGINE_NAME, ENGINE_VERSION, fingerprint_fields=("approver_id",))
def apply_rejection(
    expense: Expense,
    *,
    approver_id: UUID,
    comments: str,
    reason: str | None = None,
    decided_at: datetime,
) -> WorkflowTransition:
    """Mark the approver's slot rejected.

    Under ``sequential`` the expense is rejected at once with
    ``rejection_reason = reason or comments``.  Under ``parallel`` the
    rejection takes effect once every slot has responded.  Under
    ``percentage`` and ``any_one`` only the completion predicate runs;
    a rejection alone never terminates those workflows.
    """
    _require_pending(expense)
    index = _require_slot(expense, approver_id)

    workflow = expense.approval_workflow
    slot = workflow.approvers[index].decide(
        SlotStatus.REJECTED, comments, decided_at, reason=reason or "",
    )
    workflow = workflow.with_slot(index, slot)
    rejection_reason = reason or comments

    if workflow.sequence_type == SequenceType.SEQUENTIAL:
        return WorkflowTransition(
            workflow=replace(workflow, completed_at=decided_at),
            status=ExpenseStatus.REJECTED,
            completed=True,
            rejection_reason=rejection_reason,
            reason=f"Rejected at step {workflow.current_step + 1}",
        )

    check = evaluate_completion(workflow)
    if not check.complete:
        return WorkflowTransition(
            workflow=check.workflow,
            status=ExpenseStatus.PENDING,
            reason=check.reason,
        )
    return _complete(
        check,
        approver_id=approver_id,
        decided_at=decided_at,
        rejection_reason=rejection_reason if check.forced_rejection else None,
    )


@traced_engine(ENGINE_NAME, ENGINE_VERSION, fingerprint_fields=("admin_id",))
def apply_admin_override(
    expense: Expense,
    *,
    admin_id: UUID,
    decided_at: datetime,
) -> WorkflowTransition:
    """Force-approve a pending expense regardless of workflow state.

    Every pending slot is approved with the override comment.  Works on
    empty workflows.  ``current_step`` is left as is.
    """
    _require_pending(expense)

    workflow = expense.approval_workflow
    slots = tuple(
        slot.decide(SlotStatus.APPROVED, ADMIN_OVERRIDE_COMMENT, decided_at)
        if slot.is_pending else slot
        for slot in workflow.approvers
    )
    return WorkflowTransition(
        workflow=replace(workflow, approvers=slots, completed_at=decided_at),
        status=ExpenseStatus.APPROVED,
        completed=True,
        approved_by=admin_id,
        approved_at=decided_at,
        reason="Administrative override",
    )


def record_decision(
    expense: Expense,
    approver_id: UUID,
    decision: ApprovalDecision,
    comments: str = "",
    reason: str | None = None,
    *,
    decided_at: datetime,
) -> WorkflowTransition:
    """Dispatch an approver's decision to the approval or rejection path.

    Raises:
        ExpenseNotPendingError: The expense is already decided.
        ApproverNotEligibleError: No pending slot for ``approver_id``.
    """
    decision = ApprovalDecision(decision)
    if decision == ApprovalDecision.APPROVE:
        return apply_approval(
            expense, approver_id=approver_id, comments=comments, decided_at=decided_at,
        )
    return apply_rejection(
        expense,
        approver_id=approver_id,
        comments=comments,
        reason=reason,
        decided_at=decided_at,
    )
