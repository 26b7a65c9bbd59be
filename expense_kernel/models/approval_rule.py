"""
Module: expense_kernel.models.approval_rule
Responsibility: ORM persistence for tenant approval rules and their ordered
    approver lists.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - sequence_type is one of sequential/parallel/percentage/any_one and
      min_approval_percentage lies in 0..100 (DB check constraints).
    - UNIQUE(rule_id, approver_id): an approver appears at most once per rule.
    - Approvers load ordered by ``order`` ascending.

Failure modes:
    - IntegrityError on duplicate approver within a rule.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, TimestampedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalRule


class ApprovalRuleModel(TimestampedBase):
    """Persistent approval rule template."""

    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint(
            "sequence_type IN ('sequential', 'parallel', 'percentage', 'any_one')",
            name="ck_approval_rules_valid_sequence_type",
        ),
        CheckConstraint(
            "min_approval_percentage >= 0 AND min_approval_percentage <= 100",
            name="ck_approval_rules_percentage_range",
        ),
        CheckConstraint("min_amount >= 0", name="ck_approval_rules_min_amount"),
        Index("ix_approval_rules_tenant_active", "tenant_id", "is_active"),
        Index("ix_approval_rules_listing", "tenant_id", "priority", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("tenants.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    sequence_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="sequential",
    )
    min_approval_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100,
    )
    min_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Reserved: stored for round-tripping, never evaluated by the matcher
    departments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    approvers: Mapped[list[ApprovalRuleApproverModel]] = relationship(
        "ApprovalRuleApproverModel",
        back_populates="rule",
        order_by="ApprovalRuleApproverModel.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRule {self.id} {self.name!r} "
            f"{self.sequence_type} priority={self.priority}>"
        )

    def to_dto(self) -> ApprovalRule:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            ApprovalRule as ApprovalRuleDTO,
            RuleApprover,
            RuleConditions,
            SequenceType,
        )
        from expense_kernel.domain.expense import ExpenseCategory

        return ApprovalRuleDTO(
            rule_id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            description=self.description,
            approvers=tuple(
                RuleApprover(approver_id=a.approver_id, order=a.order)
                for a in sorted(self.approvers, key=lambda a: a.order)
            ),
            sequence_type=SequenceType(self.sequence_type),
            min_approval_percentage=self.min_approval_percentage,
            conditions=RuleConditions(
                min_amount=Decimal(self.min_amount),
                max_amount=Decimal(self.max_amount) if self.max_amount is not None else None,
                categories=frozenset(ExpenseCategory(c) for c in self.categories or ()),
                departments=tuple(self.departments or ()),
            ),
            is_active=self.is_active,
            priority=self.priority,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ApprovalRuleApproverModel(Base):
    """One approver position within a rule."""

    __tablename__ = "approval_rule_approvers"

    __table_args__ = (
        UniqueConstraint("rule_id", "approver_id", name="uq_rule_approvers_approver"),
        CheckConstraint('"order" >= 1', name="ck_rule_approvers_order_positive"),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_rules.id", ondelete="CASCADE"), nullable=False,
    )
    approver_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    rule: Mapped[ApprovalRuleModel] = relationship(
        "ApprovalRuleModel", back_populates="approvers",
    )

    def __repr__(self) -> str:
        return f"<RuleApprover rule={self.rule_id} approver={self.approver_id} order={self.order}>"
