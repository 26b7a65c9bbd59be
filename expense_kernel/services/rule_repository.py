"""
ApprovalRuleRepository -- tenant-scoped persistence for approval rules.

Responsibility:
    Lists, creates, updates and deletes approval rules, validating every
    approver reference against the tenant's user directory before any
    write.  Returns frozen ``ApprovalRule`` DTOs, never ORM entities.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only: the calling
    service owns commit/rollback.

Invariants enforced:
    - Listing order is priority descending, then creation time descending.
      The rule matcher walks this order and the first match wins.
    - A rule from another tenant is indistinguishable from a missing one
      (``RuleNotFoundError``).
    - Approver validation is all-or-nothing: one bad reference fails the
      whole create/update with ``InvalidApproverError`` and nothing is
      written.

Failure modes:
    - ValidationError with field-level detail for malformed rule fields.
    - InvalidApproverError for unknown, foreign or non-approver users.
    - RuleNotFoundError on update/delete/get of an unknown rule.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import (
    ApprovalRule,
    RuleApprover,
    RuleConditions,
    RuleDraft,
    SequenceType,
)
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.identity import APPROVER_ROLES, UserRole
from expense_kernel.exceptions import (
    InvalidApproverError,
    RuleNotFoundError,
    ValidationError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval_rule import (
    ApprovalRuleApproverModel,
    ApprovalRuleModel,
)
from expense_kernel.models.tenant import UserModel

logger = get_logger("services.rule_repository")

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

_UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "approvers",
    "sequence_type",
    "min_approval_percentage",
    "conditions",
    "is_active",
    "priority",
})


class ApprovalRuleRepository:
    """Tenant-scoped CRUD over approval rules."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _listing_query(self, tenant_id: UUID):
        return (
            select(ApprovalRuleModel)
            .where(ApprovalRuleModel.tenant_id == tenant_id)
            .order_by(
                ApprovalRuleModel.priority.desc(),
                ApprovalRuleModel.created_at.desc(),
            )
        )

    def list_active_rules(self, tenant_id: UUID) -> list[ApprovalRule]:
        """Active rules in matching order (priority desc, created_at desc)."""
        stmt = self._listing_query(tenant_id).where(
            ApprovalRuleModel.is_active.is_(True)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def list_rules(self, tenant_id: UUID) -> list[ApprovalRule]:
        """All rules of the tenant, active and inactive, in listing order."""
        stmt = self._listing_query(tenant_id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def _get_model(self, tenant_id: UUID, rule_id: UUID) -> ApprovalRuleModel:
        model = self.session.get(ApprovalRuleModel, rule_id)
        if model is None or model.tenant_id != tenant_id:
            raise RuleNotFoundError(str(rule_id))
        return model

    def get_rule(self, tenant_id: UUID, rule_id: UUID) -> ApprovalRule:
        """
        Get one rule.

        Raises:
            RuleNotFoundError: Missing, or owned by another tenant.
        """
        return self._get_model(tenant_id, rule_id).to_dto()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_rule(self, tenant_id: UUID, draft: RuleDraft) -> ApprovalRule:
        """
        Validate and persist a new rule.

        Args:
            tenant_id: Owning tenant.
            draft: Caller-supplied rule fields.

        Returns:
            The persisted rule.

        Raises:
            ValidationError: Malformed fields.
            InvalidApproverError: Any approver is unknown, foreign, or
                lacks the admin/manager role.
        """
        self._validate_draft(draft)
        self._validate_approvers(tenant_id, draft.approvers)

        now = self._clock.now()
        model = ApprovalRuleModel(
            tenant_id=tenant_id,
            created_at=now,
            updated_at=now,
        )
        self._apply_draft(model, draft)
        self.session.add(model)
        self.session.flush()

        logger.info(
            "rule_created",
            extra={
                "tenant_id": str(tenant_id),
                "rule_id": str(model.id),
                "sequence_type": draft.sequence_type.value,
                "approver_count": len(draft.approvers),
                "priority": draft.priority,
            },
        )
        return model.to_dto()

    def update_rule(
        self, tenant_id: UUID, rule_id: UUID, **changes: Any,
    ) -> ApprovalRule:
        """
        Apply a partial update to a rule.

        Only the named fields change.  The merged result is validated as a
        whole before anything is written; in-flight workflows built from
        the old version are unaffected.

        Raises:
            RuleNotFoundError: Missing, or owned by another tenant.
            ValidationError: Unknown field or malformed merged rule.
            InvalidApproverError: Any approver in the merged rule is invalid.
        """
        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError.for_fields([
                {"field": f, "message": "Field cannot be updated"} for f in unknown
            ])

        model = self._get_model(tenant_id, rule_id)
        current = model.to_dto()
        merged = replace(
            RuleDraft(
                name=current.name,
                approvers=current.approvers,
                sequence_type=current.sequence_type,
                min_approval_percentage=current.min_approval_percentage,
                conditions=current.conditions,
                description=current.description,
                is_active=current.is_active,
                priority=current.priority,
            ),
            **changes,
        )
        self._validate_draft(merged)
        replace_approvers = "approvers" in changes
        if replace_approvers:
            self._validate_approvers(tenant_id, merged.approvers)
            # Orphan deletes must reach the DB before the re-inserts:
            # UNIQUE(rule_id, approver_id)
            model.approvers.clear()
            self.session.flush()

        self._apply_draft(model, merged, replace_approvers=replace_approvers)
        model.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "rule_updated",
            extra={
                "tenant_id": str(tenant_id),
                "rule_id": str(rule_id),
                "changed_fields": sorted(changes),
            },
        )
        return model.to_dto()

    def delete_rule(self, tenant_id: UUID, rule_id: UUID) -> None:
        """
        Delete a rule.  Existing workflow snapshots keep working.

        Raises:
            RuleNotFoundError: Missing, or owned by another tenant.
        """
        model = self._get_model(tenant_id, rule_id)
        self.session.delete(model)
        self.session.flush()
        logger.info(
            "rule_deleted",
            extra={"tenant_id": str(tenant_id), "rule_id": str(rule_id)},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_draft(
        self,
        model: ApprovalRuleModel,
        draft: RuleDraft,
        replace_approvers: bool = True,
    ) -> None:
        conditions = draft.conditions
        model.name = draft.name.strip()
        model.description = draft.description or ""
        model.sequence_type = SequenceType(draft.sequence_type).value
        model.min_approval_percentage = draft.min_approval_percentage
        model.min_amount = conditions.min_amount
        model.max_amount = conditions.max_amount
        model.categories = sorted(c.value for c in conditions.categories)
        model.departments = list(conditions.departments)
        model.is_active = draft.is_active
        model.priority = draft.priority
        if not replace_approvers:
            return
        model.approvers = [
            ApprovalRuleApproverModel(approver_id=a.approver_id, order=a.order)
            for a in sorted(draft.approvers, key=lambda a: a.order)
        ]

    def _validate_draft(self, draft: RuleDraft) -> None:
        errors: list[dict[str, Any]] = []

        name = (draft.name or "").strip()
        if not name:
            errors.append({"field": "name", "message": "Rule name is required"})
        elif len(name) > MAX_NAME_LENGTH:
            errors.append({
                "field": "name",
                "message": f"Rule name must be at most {MAX_NAME_LENGTH} characters",
            })
        if len(draft.description or "") > MAX_DESCRIPTION_LENGTH:
            errors.append({
                "field": "description",
                "message": (
                    f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
                ),
            })

        try:
            SequenceType(draft.sequence_type)
        except ValueError:
            errors.append({"field": "sequence_type", "message": "Invalid sequence type"})

        pct = draft.min_approval_percentage
        if not isinstance(pct, int) or isinstance(pct, bool) or not 0 <= pct <= 100:
            errors.append({
                "field": "min_approval_percentage",
                "message": "Must be an integer between 0 and 100",
            })

        errors.extend(_condition_errors(draft.conditions))
        errors.extend(_approver_shape_errors(draft.approvers))

        if errors:
            raise ValidationError.for_fields(errors)

    def _validate_approvers(
        self, tenant_id: UUID, approvers: tuple[RuleApprover, ...],
    ) -> None:
        ids = [a.approver_id for a in approvers]
        stmt = select(UserModel).where(
            UserModel.id.in_(ids),
            UserModel.tenant_id == tenant_id,
        )
        found = {u.id: u for u in self.session.execute(stmt).scalars()}

        invalid = [
            str(approver_id)
            for approver_id in ids
            if approver_id not in found
            or UserRole(found[approver_id].role) not in APPROVER_ROLES
        ]
        if invalid:
            logger.warning(
                "rule_approvers_invalid",
                extra={"tenant_id": str(tenant_id), "approver_ids": invalid},
            )
            raise InvalidApproverError(invalid)


def _condition_errors(conditions: RuleConditions) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    if not isinstance(conditions.min_amount, Decimal) or conditions.min_amount < 0:
        errors.append({
            "field": "conditions.min_amount",
            "message": "Must be a non-negative amount",
        })
    elif conditions.max_amount is not None and (
        not conditions.max_amount.is_finite()
        or conditions.max_amount < conditions.min_amount
    ):
        errors.append({
            "field": "conditions.max_amount",
            "message": "Must be at least min_amount",
        })
    return errors


def _approver_shape_errors(
    approvers: tuple[RuleApprover, ...],
) -> list[dict[str, Any]]:
    if not approvers:
        return [{"field": "approvers", "message": "At least one approver is required"}]

    errors: list[dict[str, Any]] = []
    seen: set[UUID] = set()
    for a in approvers:
        if a.order < 1:
            errors.append({
                "field": "approvers",
                "message": f"Order must be at least 1 for approver {a.approver_id}",
            })
        if a.approver_id in seen:
            errors.append({
                "field": "approvers",
                "message": f"Duplicate approver {a.approver_id}",
            })
        seen.add(a.approver_id)
    return errors
