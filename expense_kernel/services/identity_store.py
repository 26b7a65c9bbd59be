"""
IdentityStore -- tenants (companies) and their users.

Responsibility:
    Lookup of tenants and users for authorization and routing, plus the
    two identity writes the system needs: the signup bootstrap (company
    and first admin together) and adding a user to an existing tenant.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only.  Satisfies the
    ``IdentityProvider`` protocol consumed by the lifecycle coordinator.

Invariants enforced:
    - ``create_tenant_with_admin`` writes both rows in one flush: the
      company never exists without its admin.
    - A user's manager belongs to the same tenant.
    - Email addresses are unique.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.currency import CurrencyRegistry
from expense_kernel.domain.identity import TenantRecord, UserRecord, UserRole
from expense_kernel.exceptions import (
    DuplicateEmailError,
    InvalidCurrencyError,
    TenantNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.models.tenant import TenantModel, UserModel

logger = get_logger("services.identity_store")


class IdentityStore:
    """Tenant and user persistence."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def find_tenant(self, tenant_id: UUID) -> TenantRecord:
        model = self.session.get(TenantModel, tenant_id)
        if model is None:
            raise TenantNotFoundError(str(tenant_id))
        return model.to_dto()

    def find_user(self, user_id: UUID) -> UserRecord:
        model = self.session.get(UserModel, user_id)
        if model is None:
            raise UserNotFoundError(str(user_id))
        return model.to_dto()

    def list_users(
        self,
        tenant_id: UUID,
        role: UserRole | None = None,
        manager_id: UUID | None = None,
    ) -> list[UserRecord]:
        """Users of the tenant by name; ``manager_id`` narrows to direct reports."""
        stmt = select(UserModel).where(UserModel.tenant_id == tenant_id)
        if role is not None:
            stmt = stmt.where(UserModel.role == UserRole(role).value)
        if manager_id is not None:
            stmt = stmt.where(UserModel.manager_id == manager_id)
        stmt = stmt.order_by(UserModel.name)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def create_tenant_with_admin(
        self,
        company_name: str,
        base_currency: str,
        admin_name: str,
        admin_email: str,
    ) -> tuple[TenantRecord, UserRecord]:
        """
        Signup bootstrap: create a company and its first admin.

        Both rows are added before a single flush, so either both exist
        afterwards or neither does once the caller rolls back.

        Raises:
            ValidationError: Blank company or admin name.
            InvalidCurrencyError: Unsupported base currency.
            DuplicateEmailError: Email already registered.
        """
        errors = []
        if not (company_name or "").strip():
            errors.append({"field": "company_name", "message": "Company name is required"})
        if not (admin_name or "").strip():
            errors.append({"field": "name", "message": "Name is required"})
        if errors:
            raise ValidationError.for_fields(errors)
        if not CurrencyRegistry.is_valid(base_currency):
            raise InvalidCurrencyError(base_currency, field="base_currency")

        email = _normalize_email(admin_email)
        self._ensure_email_free(email)

        now = self._clock.now()
        tenant = TenantModel(
            id=uuid4(),
            name=company_name.strip(),
            base_currency=CurrencyRegistry.normalize(base_currency),
            created_at=now,
            updated_at=now,
        )
        self.session.add(tenant)
        admin = UserModel(
            tenant_id=tenant.id,
            name=admin_name.strip(),
            email=email,
            role=UserRole.ADMIN.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(admin)
        self.session.flush()

        logger.info(
            "tenant_created",
            extra={
                "tenant_id": str(tenant.id),
                "admin_id": str(admin.id),
                "base_currency": tenant.base_currency,
            },
        )
        return tenant.to_dto(), admin.to_dto()

    def add_user(
        self,
        tenant_id: UUID,
        name: str,
        email: str,
        role: UserRole = UserRole.EMPLOYEE,
        manager_id: UUID | None = None,
        department: str = "",
    ) -> UserRecord:
        """
        Add a user to an existing tenant.

        Raises:
            TenantNotFoundError: Unknown tenant.
            ValidationError: Blank name, bad role, or a manager outside
                the tenant.
            DuplicateEmailError: Email already registered.
        """
        self.find_tenant(tenant_id)

        errors = []
        if not (name or "").strip():
            errors.append({"field": "name", "message": "Name is required"})
        try:
            role = UserRole(role)
        except ValueError:
            errors.append({"field": "role", "message": "Invalid role"})
        if manager_id is not None:
            manager = self.session.get(UserModel, manager_id)
            if manager is None or manager.tenant_id != tenant_id:
                errors.append({
                    "field": "manager_id",
                    "message": "Manager must belong to the same company",
                })
        if errors:
            raise ValidationError.for_fields(errors)

        normalized = _normalize_email(email)
        self._ensure_email_free(normalized)

        now = self._clock.now()
        user = UserModel(
            tenant_id=tenant_id,
            name=name.strip(),
            email=normalized,
            role=role.value,
            manager_id=manager_id,
            department=department or "",
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        self.session.flush()

        logger.info(
            "user_added",
            extra={
                "tenant_id": str(tenant_id),
                "user_id": str(user.id),
                "role": role.value,
            },
        )
        return user.to_dto()

    def _ensure_email_free(self, email: str) -> None:
        stmt = select(func.count()).select_from(UserModel).where(UserModel.email == email)
        if self.session.execute(stmt).scalar_one():
            raise DuplicateEmailError(email)


def _normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if "@" not in normalized:
        raise ValidationError.for_fields([
            {"field": "email", "message": "Valid email is required"},
        ])
    return normalized
