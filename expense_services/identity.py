"""
Company signup and user invitations.

``signup`` creates a company together with its first admin in one
transaction.  ``invite_user`` is admin-only and sends a best-effort
invitation email after the commit.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from expense_kernel.domain.identity import TenantRecord, UserRecord, UserRole
from expense_kernel.exceptions import RoleNotPermittedError, UserNotFoundError
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.services.identity_store import IdentityStore
from expense_services.notification_service import EmailNotifier

logger = get_logger("services.identity")


class IdentityService:
    def __init__(
        self,
        session: Session,
        store: IdentityStore,
        notifier: EmailNotifier | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._store = store
        self._notifier = notifier
        self._auto_commit = auto_commit

    def signup(
        self,
        company_name: str,
        base_currency: str,
        admin_name: str,
        admin_email: str,
    ) -> tuple[TenantRecord, UserRecord]:
        """Create a company and its admin together, or neither."""
        try:
            tenant, admin = self._store.create_tenant_with_admin(
                company_name, base_currency, admin_name, admin_email,
            )
            if self._auto_commit:
                self._session.commit()
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise
        return tenant, admin

    def invite_user(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        name: str,
        email: str,
        role: UserRole = UserRole.EMPLOYEE,
        manager_id: UUID | None = None,
        department: str = "",
    ) -> UserRecord:
        """
        Add a user to the actor's company and email them an invitation.

        Raises:
            RoleNotPermittedError: The actor is not an admin.
            ValidationError: Bad name, role or manager.
            DuplicateEmailError: Email already registered.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            try:
                actor = self._store.find_user(actor_id)
                if actor.tenant_id != tenant_id:
                    raise UserNotFoundError(str(actor_id))
                if actor.role != UserRole.ADMIN:
                    raise RoleNotPermittedError(str(actor_id), actor.role.value, "invite users")
                tenant = self._store.find_tenant(tenant_id)
                user = self._store.add_user(
                    tenant_id,
                    name=name,
                    email=email,
                    role=role,
                    manager_id=manager_id,
                    department=department,
                )
                if self._auto_commit:
                    self._session.commit()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning("user_invitation_failed", exc_info=True)
                raise

            if self._notifier is not None:
                self._notifier.send_invitation(user, tenant.name, invited_by=actor.name)
            return user
