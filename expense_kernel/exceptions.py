"""
Typed Exception Hierarchy for the Expense Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (an HTTP layer, a job runner, a test) must be able to tell a bad
request from a missing record from a lost race without parsing message
strings.  Every error therefore:

  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        coordinator.decide_expense(tenant_id, expense_id, user_id, "approve")
    except DecisionConflictError as e:
        # Refetch and retry once with fresh state
        ...
    except NotFoundError as e:
        return {"error": e.code}, 404

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ExpenseKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidCurrencyError
    |   +-- InvalidApproverError
    |   +-- MissingRejectionCommentsError
    |
    +-- NotFoundError
    |   +-- TenantNotFoundError
    |   +-- UserNotFoundError
    |   +-- RuleNotFoundError
    |   +-- ExpenseNotFoundError
    |       +-- ExpenseNotPendingError
    |
    +-- AuthorizationError
    |   +-- RoleNotPermittedError
    |   +-- ApproverNotEligibleError   (also a NotFoundError)
    |
    +-- ConflictError
    |   +-- DecisionConflictError
    |   +-- DuplicateEmailError
    |
    +-- UpstreamError
        +-- CurrencyConversionError
        +-- ReceiptIngestionError
        +-- NotificationDeliveryError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                         | When Raised
--------------|------------------------------|------------------------------------
Validation    | VALIDATION_ERROR             | Malformed input, field-level detail
              | INVALID_CURRENCY             | Not a supported ISO 4217 code
              | INVALID_APPROVER             | Rule approver missing/foreign/wrong role
              | MISSING_REJECTION_COMMENTS   | Reject without comments
--------------|------------------------------|------------------------------------
Not found     | TENANT_NOT_FOUND             | Tenant id unknown
              | USER_NOT_FOUND               | User id unknown or other tenant
              | RULE_NOT_FOUND               | Rule unknown or other tenant
              | EXPENSE_NOT_FOUND            | Expense unknown, other tenant, or
              |                              | not pending (deliberately conflated)
              | EXPENSE_NOT_PENDING          | Engine precondition: terminal status
--------------|------------------------------|------------------------------------
Authorization | ROLE_NOT_PERMITTED           | Caller role may not perform action
              | APPROVER_NOT_ELIGIBLE        | Caller holds no pending slot
--------------|------------------------------|------------------------------------
Conflict      | DECISION_CONFLICT            | Concurrent decision race lost
              | DUPLICATE_EMAIL              | User email already registered
--------------|------------------------------|------------------------------------
Upstream      | CURRENCY_CONVERSION_FAILED   | Rate source failure (fatal)
              | RECEIPT_INGESTION_FAILED     | OCR failure (degraded to warning)
              | NOTIFICATION_DELIVERY_FAILED | SMTP failure (logged only)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ``ConflictError`` means "refetch, then retry once" -- never blind replay.
2. ``UpstreamError`` from currency conversion aborts a submission; OCR and
   email failures are caught at the coordinator/notifier boundary.
3. ``ApproverNotEligibleError`` inherits from both ``AuthorizationError``
   and ``NotFoundError`` so a transport layer can map it either way.
"""

from __future__ import annotations

from typing import Any


class ExpenseKernelError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EXPENSE_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ExpenseKernelError):
    """Malformed input. Never retried automatically."""

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field_errors: list[dict[str, Any]] | None = None,
    ):
        self.field_errors = field_errors or []
        super().__init__(message)

    @classmethod
    def for_fields(cls, field_errors: list[dict[str, Any]]) -> ValidationError:
        """Build a ValidationError summarising collected field errors."""
        fields = ", ".join(e["field"] for e in field_errors)
        return cls(
            f"Validation failed: {len(field_errors)} error(s) ({fields})",
            field_errors=field_errors,
        )


class InvalidCurrencyError(ValidationError):
    """Currency code is not a supported ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str, field: str = "currency"):
        self.currency = currency
        super().__init__(
            f"Invalid currency code: {currency!r}",
            field_errors=[{"field": field, "message": "Invalid currency code"}],
        )


class InvalidApproverError(ValidationError):
    """One or more rule approvers are missing, foreign, or lack the role."""

    code: str = "INVALID_APPROVER"

    def __init__(self, approver_ids: list[str]):
        self.approver_ids = approver_ids
        super().__init__(
            f"One or more approvers are invalid: {', '.join(approver_ids)}",
            field_errors=[
                {"field": "approvers", "message": f"Invalid approver {a}"}
                for a in approver_ids
            ],
        )


class MissingRejectionCommentsError(ValidationError):
    """A rejection was attempted without comments."""

    code: str = "MISSING_REJECTION_COMMENTS"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(
            "Rejection comments are required",
            field_errors=[{"field": "comments", "message": "Required for rejection"}],
        )


# Not-found exceptions


class NotFoundError(ExpenseKernelError):
    """Entity absent, or the caller lacks visibility of it."""

    code: str = "NOT_FOUND"


class TenantNotFoundError(NotFoundError):
    """Tenant with given ID was not found."""

    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class UserNotFoundError(NotFoundError):
    """User with given ID was not found in the tenant."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class RuleNotFoundError(NotFoundError):
    """Approval rule was not found for the calling tenant."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


class ExpenseNotFoundError(NotFoundError):
    """
    Expense not found, or not pending approval.

    The two cases are surfaced identically on decision operations so an
    unauthorized caller cannot learn an expense's state.
    """

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str, message: str | None = None):
        self.expense_id = expense_id
        super().__init__(
            message or f"Expense not found or not pending approval: {expense_id}"
        )


class ExpenseNotPendingError(ExpenseNotFoundError):
    """Expense is in a terminal status and accepts no further decisions."""

    code: str = "EXPENSE_NOT_PENDING"

    def __init__(self, expense_id: str, status: str):
        self.status = status
        super().__init__(expense_id)


# Authorization exceptions


class AuthorizationError(ExpenseKernelError):
    """Caller is authenticated but not permitted."""

    code: str = "AUTHORIZATION_ERROR"


class RoleNotPermittedError(AuthorizationError):
    """Caller's role does not allow the requested action."""

    code: str = "ROLE_NOT_PERMITTED"

    def __init__(self, user_id: str, role: str, action: str):
        self.user_id = user_id
        self.role = role
        self.action = action
        super().__init__(f"Role {role!r} of user {user_id} may not {action}")


class ApproverNotEligibleError(AuthorizationError, NotFoundError):
    """Caller holds no pending approver slot on the expense."""

    code: str = "APPROVER_NOT_ELIGIBLE"

    def __init__(self, expense_id: str, approver_id: str):
        self.expense_id = expense_id
        self.approver_id = approver_id
        super().__init__(
            f"User {approver_id} is not authorized to decide on expense {expense_id}"
        )


# Conflict exceptions


class ConflictError(ExpenseKernelError):
    """Concurrent modification or uniqueness conflict."""

    code: str = "CONFLICT"


class DecisionConflictError(ConflictError):
    """
    A concurrent decision changed the expense first.

    The caller should refetch and may retry once with fresh state.
    """

    code: str = "DECISION_CONFLICT"

    def __init__(self, expense_id: str, expected_version: int):
        self.expense_id = expense_id
        self.expected_version = expected_version
        super().__init__(
            f"Expense {expense_id} not found or not pending: it was modified "
            f"by another transaction (expected version {expected_version})"
        )


class DuplicateEmailError(ConflictError):
    """A user with this email already exists."""

    code: str = "DUPLICATE_EMAIL"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email {email} already exists")


# Upstream collaborator exceptions


class UpstreamError(ExpenseKernelError):
    """An external collaborator (currency, OCR, email) failed."""

    code: str = "UPSTREAM_ERROR"


class CurrencyConversionError(UpstreamError):
    """Exchange rates could not be obtained or did not cover the pair."""

    code: str = "CURRENCY_CONVERSION_FAILED"

    def __init__(self, from_currency: str, to_currency: str, reason: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        super().__init__(
            f"Failed to convert {from_currency} to {to_currency}: {reason}"
        )


class ReceiptIngestionError(UpstreamError):
    """The OCR service failed or returned unusable data."""

    code: str = "RECEIPT_INGESTION_FAILED"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Receipt ingestion failed: {reason}")


class NotificationDeliveryError(UpstreamError):
    """An email could not be delivered."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Failed to send email to {recipient}: {reason}")
