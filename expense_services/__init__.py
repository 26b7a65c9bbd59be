"""
Module: expense_services
Responsibility:
    Stateful orchestration over the kernel and the pure engines: the
    expense lifecycle coordinator, approval-rule administration, identity
    onboarding and the external collaborators (currency, receipt OCR,
    email).

Architecture position:
    Services.  May import expense_kernel, expense_engines and (in
    bootstrap only) expense_config.  Owns transaction boundaries.
"""

from expense_services.approval_rules import ApprovalRuleService
from expense_services.currency_service import (
    CurrencyConverter,
    ExchangeRateCache,
    HttpRateSource,
)
from expense_services.expense_lifecycle import ExpenseLifecycleCoordinator
from expense_services.identity import IdentityService
from expense_services.notification_service import EmailNotifier, SmtpMailer
from expense_services.receipt_service import ReceiptParser

__all__ = [
    "ApprovalRuleService",
    "CurrencyConverter",
    "EmailNotifier",
    "ExchangeRateCache",
    "ExpenseLifecycleCoordinator",
    "HttpRateSource",
    "IdentityService",
    "ReceiptParser",
    "SmtpMailer",
]
