"""
ExpenseAppConfig schema.

Frozen settings objects parsed from a YAML configuration set (plus a
fixed list of environment overrides) by the loader.  Nothing outside
``expense_config`` reads YAML or environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///expenses.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class CurrencySettings:
    api_base: str = "https://api.exchangerate-api.com/v4/latest"
    cache_ttl_seconds: int = 3600
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ReceiptSettings:
    """OCR collaborator.  Disabled means receipts are stored unparsed."""

    enabled: bool = False
    endpoint: str = ""
    api_key: str = ""
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class NotificationSettings:
    """SMTP delivery.  Disabled means emails are only logged."""

    enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    from_address: str = ""
    use_tls: bool = True
    frontend_url: str = "http://localhost:3000"


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class ExpenseAppConfig:
    """The sole runtime configuration artifact."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    currency: CurrencySettings = field(default_factory=CurrencySettings)
    receipts: ReceiptSettings = field(default_factory=ReceiptSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""
