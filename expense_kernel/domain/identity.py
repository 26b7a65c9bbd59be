"""Identity value objects: tenants (companies) and their users."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol
from uuid import UUID


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


APPROVER_ROLES: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.MANAGER})


@dataclass(frozen=True)
class TenantRecord:
    tenant_id: UUID
    name: str
    base_currency: str
    is_active: bool = True


@dataclass(frozen=True)
class UserRecord:
    user_id: UUID
    tenant_id: UUID
    name: str
    email: str
    role: UserRole
    manager_id: UUID | None = None
    department: str = ""
    is_active: bool = True

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES


class IdentityProvider(Protocol):
    """Lookup interface the lifecycle coordinator consumes."""

    def find_user(self, user_id: UUID) -> UserRecord:
        ...

    def find_tenant(self, tenant_id: UUID) -> TenantRecord:
        ...

    def list_users(
        self,
        tenant_id: UUID,
        role: UserRole | None = None,
        manager_id: UUID | None = None,
    ) -> list[UserRecord]:
        ...
