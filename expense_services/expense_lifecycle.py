"""
expense_services.expense_lifecycle -- Submission and decision orchestration.

Responsibility:
    Wires the pure engines (rule matcher, workflow builder, workflow state
    machine) to persistence, authorization and the external collaborators
    (currency, receipt OCR, email).  Owns the transaction of every public
    write operation.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

Invariants enforced:
    - Currency is converted exactly once, at submission.  Decisions never
      touch ``original_*``, ``base_*`` or ``exchange_rate``.
    - Administrative override is one capability check made once at the
      top of ``decide_expense``.  Only admin approvals take the override
      path; admins reject through a pending slot like anyone else.
    - Decisions persist through a conditional update on the version read.
      A lost race raises ``DecisionConflictError`` and rolls back.
    - Commit on success, rollback and re-raise on failure (auto_commit).

Failure modes:
    - ValidationError / InvalidCurrencyError for malformed submissions.
    - CurrencyConversionError aborts the submission; nothing is persisted.
    - ReceiptIngestionError never escapes; it becomes a warning.
    - ExpenseNotFoundError for missing, foreign or already decided
      expenses; ApproverNotEligibleError for callers without a pending
      slot; MissingRejectionCommentsError for bare rejections.
    - Reads report expenses the actor may not see as ExpenseNotFoundError.
    - Notification failures are logged only.
"""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from expense_engines.rule_matcher import match_rule
from expense_engines.workflow import apply_admin_override, record_decision
from expense_engines.workflow_builder import build_workflow, first_notifiable_approvers
from expense_kernel.domain.approval import ApprovalDecision, ApprovalRule, WorkflowTransition
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.currency import CurrencyRegistry
from expense_kernel.domain.expense import (
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    ExpenseSubmission,
    ReceiptData,
    ReceiptUpload,
    SubmissionResult,
)
from expense_kernel.domain.identity import IdentityProvider, TenantRecord, UserRecord, UserRole
from expense_kernel.exceptions import (
    ExpenseNotFoundError,
    InvalidCurrencyError,
    MissingRejectionCommentsError,
    NotFoundError,
    ReceiptIngestionError,
    UserNotFoundError,
    ValidationError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.services.expense_repository import ExpenseRepository
from expense_kernel.services.rule_repository import ApprovalRuleRepository
from expense_services.currency_service import CurrencyConverter
from expense_services.notification_service import EmailNotifier
from expense_services.receipt_service import ReceiptParser, is_parseable_content_type

logger = get_logger("services.expense_lifecycle")

MAX_DESCRIPTION_LENGTH = 200
MAX_PAID_BY_LENGTH = 50


class ExpenseLifecycleCoordinator:
    """
    Submission and approval decisions for expenses.

    Contract:
        Every write method runs in one transaction on ``session``: commit
        on success, rollback and re-raise on failure (when
        ``auto_commit=True``).  Notifications go out after the commit.

    Non-goals:
        - Does NOT re-convert currency after submission.
        - Does NOT resolve empty workflows except through admin override.
    """

    def __init__(
        self,
        session: Session,
        identity: IdentityProvider,
        rules: ApprovalRuleRepository,
        expenses: ExpenseRepository,
        converter: CurrencyConverter,
        receipt_parser: ReceiptParser | None = None,
        notifier: EmailNotifier | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._identity = identity
        self._rules = rules
        self._expenses = expenses
        self._converter = converter
        self._receipt_parser = receipt_parser
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    @staticmethod
    def has_administrative_override(user: UserRecord, tenant: TenantRecord) -> bool:
        """Whether ``user`` may force-approve any pending expense of ``tenant``."""
        return (
            user.is_active
            and user.role == UserRole.ADMIN
            and user.tenant_id == tenant.tenant_id
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_expense(
        self,
        tenant_id: UUID,
        submitter_id: UUID,
        submission: ExpenseSubmission,
        receipt: ReceiptUpload | None = None,
    ) -> SubmissionResult:
        """
        Validate, convert, route and persist a new expense.

        Args:
            tenant_id: The submitter's company.
            submitter_id: The employee submitting.
            submission: Raw form fields.
            receipt: Optional receipt upload, parsed best effort.

        Returns:
            SubmissionResult with the stored expense and any warnings.

        Raises:
            ValidationError: Field-level problems with the submission.
            InvalidCurrencyError: Unsupported currency code.
            CurrencyConversionError: No usable exchange rate.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=submitter_id):
            t0 = time.monotonic()
            warnings: list[str] = []
            try:
                tenant = self._identity.find_tenant(tenant_id)
                submitter = self._tenant_user(tenant_id, submitter_id)
                description, category, expense_date, amount, paid_by = (
                    _validate_submission(submission)
                )
                if not CurrencyRegistry.is_valid(submission.currency):
                    raise InvalidCurrencyError(submission.currency)
                currency = CurrencyRegistry.normalize(submission.currency)

                conversion = self._converter.convert(amount, currency, tenant.base_currency)
                receipt_data = self._parse_receipt(receipt, warnings)

                rule = match_rule(
                    self._rules.list_active_rules(tenant_id),
                    conversion.converted_amount,
                    category,
                )
                workflow = build_workflow(rule, fallback_manager_id=submitter.manager_id)

                expense = self._expenses.add(Expense(
                    expense_id=uuid4(),
                    tenant_id=tenant_id,
                    submitter_id=submitter.user_id,
                    description=description,
                    category=category,
                    expense_date=expense_date,
                    paid_by=paid_by,
                    original_amount=conversion.original_amount,
                    original_currency=conversion.original_currency,
                    base_amount=conversion.converted_amount,
                    base_currency=conversion.converted_currency,
                    exchange_rate=conversion.rate,
                    approval_workflow=workflow,
                    receipt=receipt_data,
                    created_at=self._clock.now(),
                ))

                if self._auto_commit:
                    self._session.commit()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "expense_submission_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                "expense_submitted",
                extra={
                    "expense_id": str(expense.expense_id),
                    "base_amount": expense.base_amount,
                    "base_currency": expense.base_currency,
                    "category": expense.category.value,
                    "workflow_source": workflow.source.value,
                    "rule_id": str(rule.rule_id) if rule else None,
                    "approver_count": workflow.total_steps,
                    "warning_count": len(warnings),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            if workflow.is_empty:
                logger.warning(
                    "expense_workflow_empty",
                    extra={"expense_id": str(expense.expense_id)},
                )

            self._notify_approvers(expense)
            return SubmissionResult(expense=expense, warnings=tuple(warnings))

    def _parse_receipt(
        self, receipt: ReceiptUpload | None, warnings: list[str],
    ) -> ReceiptData | None:
        if receipt is None:
            return None
        if self._receipt_parser is None:
            warnings.append("Receipt parsing is disabled; receipt data was not extracted")
            return None
        if not is_parseable_content_type(receipt.content_type):
            warnings.append(
                f"Receipt of type {receipt.content_type!r} was not parsed; only images are supported"
            )
            return None
        try:
            return self._receipt_parser.parse(receipt.content, receipt.content_type)
        except ReceiptIngestionError as exc:
            logger.warning(
                "receipt_ingestion_skipped",
                extra={"filename": receipt.filename},
                exc_info=True,
            )
            warnings.append(f"Receipt could not be parsed: {exc.reason}")
            return None

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide_expense(
        self,
        tenant_id: UUID,
        expense_id: UUID,
        acting_user_id: UUID,
        decision: ApprovalDecision | str,
        comments: str = "",
        reason: str | None = None,
    ) -> Expense:
        """
        Record an approve/reject decision on a pending expense.

        Returns:
            The expense as stored after the decision.

        Raises:
            ValidationError: Unknown decision value.
            MissingRejectionCommentsError: Rejection without comments.
            ExpenseNotFoundError: Missing, foreign, or not pending.
            ApproverNotEligibleError: Caller holds no pending slot.
            DecisionConflictError: Another decision won the race.
        """
        try:
            decision = ApprovalDecision(decision)
        except ValueError:
            raise ValidationError.for_fields([
                {"field": "decision", "message": "Must be 'approve' or 'reject'"},
            ]) from None
        comments = (comments or "").strip()

        with LogContext.bind(
            tenant_id=tenant_id, actor_id=acting_user_id, expense_id=expense_id,
        ):
            t0 = time.monotonic()
            try:
                tenant = self._identity.find_tenant(tenant_id)
                actor = self._identity.find_user(acting_user_id)
                if actor.tenant_id != tenant_id:
                    raise ExpenseNotFoundError(str(expense_id))
                override = self.has_administrative_override(actor, tenant)

                if decision == ApprovalDecision.REJECT and not comments:
                    raise MissingRejectionCommentsError(str(expense_id))

                expense = self._expenses.get_pending(tenant_id, expense_id)
                decided_at = self._clock.now()

                if override and decision == ApprovalDecision.APPROVE:
                    transition = apply_admin_override(
                        expense, admin_id=actor.user_id, decided_at=decided_at,
                    )
                else:
                    transition = record_decision(
                        expense,
                        actor.user_id,
                        decision,
                        comments,
                        reason,
                        decided_at=decided_at,
                    )

                updated = self._expenses.save_transition(expense, transition)
                if self._auto_commit:
                    self._session.commit()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "approval_decision_failed",
                    extra={
                        "decision": decision.value,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                    exc_info=True,
                )
                raise

            self._log_decision(updated, decision, transition, override, t0)
            if transition.completed:
                self._notify_submitter(updated)
            return updated

    def approve_expense(
        self,
        tenant_id: UUID,
        expense_id: UUID,
        acting_user_id: UUID,
        comments: str = "",
    ) -> Expense:
        return self.decide_expense(
            tenant_id, expense_id, acting_user_id, ApprovalDecision.APPROVE, comments,
        )

    def reject_expense(
        self,
        tenant_id: UUID,
        expense_id: UUID,
        acting_user_id: UUID,
        comments: str,
        reason: str | None = None,
    ) -> Expense:
        return self.decide_expense(
            tenant_id, expense_id, acting_user_id, ApprovalDecision.REJECT, comments, reason,
        )

    def _log_decision(
        self,
        expense: Expense,
        decision: ApprovalDecision,
        transition: WorkflowTransition,
        override: bool,
        t0: float,
    ) -> None:
        workflow = expense.approval_workflow
        logger.info(
            "approval_decision_recorded",
            extra={
                "decision": decision.value,
                "admin_override": override and decision == ApprovalDecision.APPROVE,
                "status": expense.status.value,
                "current_step": workflow.current_step,
                "total_steps": workflow.total_steps,
                "sequence_type": workflow.sequence_type.value,
                "version": expense.version,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        if transition.completed:
            logger.info(
                "workflow_completed",
                extra={"status": expense.status.value, "reason": transition.reason},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_applicable_rule(
        self, tenant_id: UUID, expense_id: UUID,
    ) -> ApprovalRule | None:
        """Which active rule would govern this expense today.

        Re-runs the matcher on the stored base amount and category.  The
        expense's own workflow snapshot is not consulted or changed.
        """
        expense = self._expenses.get(tenant_id, expense_id)
        return match_rule(
            self._rules.list_active_rules(tenant_id),
            expense.base_amount,
            expense.category,
        )

    def can_view_expense(self, actor: UserRecord, expense: Expense) -> bool:
        """Submitter, tenant admin, the submitter's manager, or an assigned approver."""
        if actor.tenant_id != expense.tenant_id:
            return False
        if actor.user_id == expense.submitter_id or actor.role == UserRole.ADMIN:
            return True
        if any(s.approver_id == actor.user_id for s in expense.approval_workflow.approvers):
            return True
        if actor.role != UserRole.MANAGER:
            return False
        try:
            submitter = self._identity.find_user(expense.submitter_id)
        except NotFoundError:
            return False
        return submitter.manager_id == actor.user_id

    def get_expense(self, tenant_id: UUID, expense_id: UUID, actor_id: UUID) -> Expense:
        """
        Read one expense on behalf of ``actor_id``.

        Raises:
            ExpenseNotFoundError: Missing, foreign, or not visible to the actor.
        """
        expense = self._expenses.get(tenant_id, expense_id)
        try:
            actor = self._identity.find_user(actor_id)
        except NotFoundError:
            raise ExpenseNotFoundError(str(expense_id)) from None
        if not self.can_view_expense(actor, expense):
            logger.info(
                "expense_access_denied",
                extra={"expense_id": str(expense_id), "actor_id": str(actor_id)},
            )
            raise ExpenseNotFoundError(str(expense_id))
        return expense

    def list_expenses(
        self,
        tenant_id: UUID,
        status: ExpenseStatus | None = None,
        category: ExpenseCategory | None = None,
        submitter_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Expense]:
        return self._expenses.list_expenses(
            tenant_id,
            status=status,
            category=category,
            submitter_id=submitter_id,
            start_date=start_date,
            end_date=end_date,
        )

    def list_team_expenses(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        status: ExpenseStatus | None = None,
        category: ExpenseCategory | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Expense]:
        """
        Expenses of the actor's team, newest first.

        Admins see the whole company, managers see their direct reports,
        employees have no team and get an empty list.

        Raises:
            UserNotFoundError: Actor missing or in another tenant.
        """
        actor = self._tenant_user(tenant_id, actor_id)
        if actor.role == UserRole.ADMIN:
            members = self._identity.list_users(tenant_id)
        elif actor.role == UserRole.MANAGER:
            members = self._identity.list_users(tenant_id, manager_id=actor.user_id)
        else:
            members = []
        return self._expenses.list_expenses(
            tenant_id,
            status=status,
            category=category,
            submitter_ids={m.user_id for m in members},
            start_date=start_date,
            end_date=end_date,
        )

    def list_pending_approvals(self, tenant_id: UUID, approver_id: UUID) -> list[Expense]:
        """Pending expenses on which ``approver_id`` still holds a pending slot."""
        return self._expenses.list_pending_for_approver(tenant_id, approver_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _tenant_user(self, tenant_id: UUID, user_id: UUID) -> UserRecord:
        user = self._identity.find_user(user_id)
        if user.tenant_id != tenant_id:
            raise UserNotFoundError(str(user_id))
        return user

    def _notify_approvers(self, expense: Expense) -> None:
        if self._notifier is None:
            return
        for approver_id in first_notifiable_approvers(expense.approval_workflow):
            try:
                approver = self._identity.find_user(approver_id)
            except NotFoundError:
                logger.warning(
                    "approver_missing_for_notification",
                    extra={"approver_id": str(approver_id)},
                )
                continue
            self._notifier.send_approval_request(approver, expense)

    def _notify_submitter(self, expense: Expense) -> None:
        if self._notifier is None:
            return
        try:
            submitter = self._identity.find_user(expense.submitter_id)
        except NotFoundError:
            logger.warning(
                "submitter_missing_for_notification",
                extra={"submitter_id": str(expense.submitter_id)},
            )
            return
        self._notifier.send_decision(submitter, expense)


def _validate_submission(
    submission: ExpenseSubmission,
) -> tuple[str, ExpenseCategory, date, Decimal, str]:
    """Check every field, collecting all problems before raising."""
    errors: list[dict[str, Any]] = []

    description = (submission.description or "").strip()
    if not description:
        errors.append({"field": "description", "message": "Description is required"})
    elif len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append({
            "field": "description",
            "message": f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
        })

    category: ExpenseCategory | None = None
    try:
        category = ExpenseCategory(submission.category)
    except ValueError:
        errors.append({"field": "category", "message": "Invalid category"})

    expense_date: date | None = None
    if isinstance(submission.expense_date, date):
        expense_date = submission.expense_date
    elif submission.expense_date:
        try:
            expense_date = date.fromisoformat(str(submission.expense_date))
        except ValueError:
            errors.append({"field": "expense_date", "message": "Invalid date"})
    else:
        errors.append({"field": "expense_date", "message": "Date is required"})

    amount: Decimal | None = None
    try:
        amount = Decimal(str(submission.amount))
        if not amount.is_finite() or amount <= 0:
            raise InvalidOperation
    except (InvalidOperation, ValueError):
        amount = None
        errors.append({"field": "amount", "message": "Amount must be a positive number"})

    paid_by = (submission.paid_by or "").strip()
    if not paid_by:
        errors.append({"field": "paid_by", "message": "Paid by is required"})
    elif len(paid_by) > MAX_PAID_BY_LENGTH:
        errors.append({
            "field": "paid_by",
            "message": f"Paid by must be at most {MAX_PAID_BY_LENGTH} characters",
        })

    if errors:
        raise ValidationError.for_fields(errors)
    return description, category, expense_date, amount, paid_by
