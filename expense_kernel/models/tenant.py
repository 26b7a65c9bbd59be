"""
Module: expense_kernel.models.tenant
Responsibility: ORM persistence for tenants (companies) and their users.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Every user belongs to exactly one tenant.
    - User email is unique across the system (login identity).
    - Role is one of admin/manager/employee (DB check constraint).
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import TimestampedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.identity import TenantRecord, UserRecord


class TenantModel(TimestampedBase):
    """A company; the unit of isolation for rules, users and expenses."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant {self.id} {self.name} {self.base_currency}>"

    def to_dto(self) -> TenantRecord:
        from expense_kernel.domain.identity import TenantRecord

        return TenantRecord(
            tenant_id=self.id,
            name=self.name,
            base_currency=self.base_currency,
            is_active=self.is_active,
        )


class UserModel(TimestampedBase):
    """A tenant member: employee, manager or admin."""

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'employee')",
            name="ck_users_valid_role",
        ),
        Index("ix_users_tenant_role", "tenant_id", "role"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("tenants.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee")
    manager_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    department: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email} role={self.role}>"

    def to_dto(self) -> UserRecord:
        from expense_kernel.domain.identity import UserRecord, UserRole

        return UserRecord(
            user_id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            email=self.email,
            role=UserRole(self.role),
            manager_id=self.manager_id,
            department=self.department,
            is_active=self.is_active,
        )
