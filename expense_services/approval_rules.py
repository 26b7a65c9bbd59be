"""
Admin-only administration of a tenant's approval rules.

Thin transactional shell over ``ApprovalRuleRepository``: authorizes the
caller, delegates, then commits (or rolls back and re-raises).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from expense_kernel.domain.approval import ApprovalRule, RuleDraft
from expense_kernel.domain.identity import IdentityProvider, UserRole
from expense_kernel.exceptions import RoleNotPermittedError, UserNotFoundError
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.services.rule_repository import ApprovalRuleRepository

logger = get_logger("services.approval_rules")

T = TypeVar("T")


class ApprovalRuleService:
    """Create, update, delete and list approval rules as a tenant admin."""

    def __init__(
        self,
        session: Session,
        identity: IdentityProvider,
        rules: ApprovalRuleRepository,
        auto_commit: bool = True,
    ):
        self._session = session
        self._identity = identity
        self._rules = rules
        self._auto_commit = auto_commit

    def _require_admin(self, tenant_id: UUID, actor_id: UUID, action: str) -> None:
        actor = self._identity.find_user(actor_id)
        if actor.tenant_id != tenant_id:
            raise UserNotFoundError(str(actor_id))
        if actor.role != UserRole.ADMIN or not actor.is_active:
            raise RoleNotPermittedError(str(actor_id), actor.role.value, action)

    def _run(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        action: str,
        fn: Callable[[], T],
        rule_id: UUID | None = None,
    ) -> T:
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, rule_id=rule_id):
            try:
                self._require_admin(tenant_id, actor_id, action)
                result = fn()
                if self._auto_commit:
                    self._session.commit()
                return result
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "rule_operation_failed", extra={"action": action}, exc_info=True,
                )
                raise

    def create_rule(
        self, tenant_id: UUID, actor_id: UUID, draft: RuleDraft,
    ) -> ApprovalRule:
        return self._run(
            tenant_id, actor_id, "create approval rules",
            lambda: self._rules.create_rule(tenant_id, draft),
        )

    def update_rule(
        self, tenant_id: UUID, actor_id: UUID, rule_id: UUID, **changes: Any,
    ) -> ApprovalRule:
        return self._run(
            tenant_id, actor_id, "update approval rules",
            lambda: self._rules.update_rule(tenant_id, rule_id, **changes),
            rule_id=rule_id,
        )

    def delete_rule(self, tenant_id: UUID, actor_id: UUID, rule_id: UUID) -> None:
        self._run(
            tenant_id, actor_id, "delete approval rules",
            lambda: self._rules.delete_rule(tenant_id, rule_id),
            rule_id=rule_id,
        )

    def list_rules(self, tenant_id: UUID, actor_id: UUID) -> list[ApprovalRule]:
        return self._run(
            tenant_id, actor_id, "list approval rules",
            lambda: self._rules.list_rules(tenant_id),
        )

    def get_rule(self, tenant_id: UUID, actor_id: UUID, rule_id: UUID) -> ApprovalRule:
        return self._run(
            tenant_id, actor_id, "view approval rules",
            lambda: self._rules.get_rule(tenant_id, rule_id),
            rule_id=rule_id,
        )
