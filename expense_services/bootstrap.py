"""
expense_services.bootstrap -- Wire collaborators from configuration.

The only place where repositories, HTTP clients and the mailer are
constructed from an ``ExpenseAppConfig``.  All wiring is visible here;
no service builds other services internally.

Usage::

    config = get_active_config()
    configure_logging(level=config.logging.level)
    init_engine_from_url(config.database.url)
    with session_scope() as session:
        coordinator = build_coordinator(session, config)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from expense_config.schema import ExpenseAppConfig
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.services.expense_repository import ExpenseRepository
from expense_kernel.services.identity_store import IdentityStore
from expense_kernel.services.rule_repository import ApprovalRuleRepository
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


def build_rate_cache(config: ExpenseAppConfig) -> ExchangeRateCache:
    """One cache per process; pass it to every ``build_coordinator`` call."""
    return ExchangeRateCache(ttl_seconds=config.currency.cache_ttl_seconds)


def build_converter(
    config: ExpenseAppConfig, cache: ExchangeRateCache | None = None,
) -> CurrencyConverter:
    source = HttpRateSource(
        api_base=config.currency.api_base,
        timeout_seconds=config.currency.timeout_seconds,
    )
    return CurrencyConverter(source, cache or build_rate_cache(config))


def build_receipt_parser(config: ExpenseAppConfig) -> ReceiptParser | None:
    settings = config.receipts
    if not settings.enabled or not settings.endpoint:
        return None
    return ReceiptParser(
        endpoint=settings.endpoint,
        api_key=settings.api_key,
        timeout_seconds=settings.timeout_seconds,
    )


def build_notifier(config: ExpenseAppConfig) -> EmailNotifier:
    settings = config.notifications
    mailer = None
    if settings.enabled:
        mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.username,
            password=settings.password,
            from_address=settings.from_address,
            use_tls=settings.use_tls,
        )
    return EmailNotifier(mailer, frontend_url=settings.frontend_url)


def build_coordinator(
    session: Session,
    config: ExpenseAppConfig,
    clock: Clock | None = None,
    rate_cache: ExchangeRateCache | None = None,
) -> ExpenseLifecycleCoordinator:
    clock = clock or SystemClock()
    return ExpenseLifecycleCoordinator(
        session=session,
        identity=IdentityStore(session, clock),
        rules=ApprovalRuleRepository(session, clock),
        expenses=ExpenseRepository(session, clock),
        converter=build_converter(config, rate_cache),
        receipt_parser=build_receipt_parser(config),
        notifier=build_notifier(config),
        clock=clock,
    )


def build_rule_service(
    session: Session, clock: Clock | None = None,
) -> ApprovalRuleService:
    clock = clock or SystemClock()
    return ApprovalRuleService(
        session=session,
        identity=IdentityStore(session, clock),
        rules=ApprovalRuleRepository(session, clock),
    )


def build_identity_service(
    session: Session, config: ExpenseAppConfig, clock: Clock | None = None,
) -> IdentityService:
    return IdentityService(
        session=session,
        store=IdentityStore(session, clock or SystemClock()),
        notifier=build_notifier(config),
    )
