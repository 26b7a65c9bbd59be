"""
YAML loader: reads a configuration file and parses it into
``ExpenseAppConfig``.

Failure modes:

* Missing file     -> ``FileNotFoundError`` propagates.
* Malformed YAML   -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or a value of the wrong shape -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from expense_config.schema import (
    CurrencySettings,
    DatabaseSettings,
    ExpenseAppConfig,
    LoggingSettings,
    NotificationSettings,
    ReceiptSettings,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "currency": CurrencySettings,
    "receipts": ReceiptSettings,
    "notifications": NotificationSettings,
    "logging": LoggingSettings,
}

# env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DATABASE_URL": ("database", "url"),
    "CURRENCY_API_BASE": ("currency", "api_base"),
    "OCR_ENDPOINT": ("receipts", "endpoint"),
    "OCR_API_KEY": ("receipts", "api_key"),
    "SMTP_HOST": ("notifications", "smtp_host"),
    "SMTP_PORT": ("notifications", "smtp_port"),
    "SMTP_USERNAME": ("notifications", "username"),
    "SMTP_PASSWORD": ("notifications", "password"),
    "EMAIL_FROM": ("notifications", "from_address"),
    "LOG_LEVEL": ("logging", "level"),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str],
) -> dict[str, Any]:
    """Return a copy of ``data`` with the supported environment overrides applied."""
    merged = {section: dict(data.get(section) or {}) for section in _SECTIONS}
    for key in data:
        if key not in merged:
            merged[key] = data[key]
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value not in (None, ""):
            merged[section][key] = value
    return merged


def _coerce(section: str, name: str, default: Any, value: Any) -> Any:
    expected = type(default)
    if expected is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    elif expected is int:
        if isinstance(value, bool):
            raise ValueError(f"{section}.{name}: expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            pass
    elif expected is float:
        try:
            return float(value)
        except (TypeError, ValueError):
            pass
    elif expected is str:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return str(value)
    raise ValueError(f"{section}.{name}: invalid value {value!r}")


def _parse_section(section: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Config section {section!r} must be a mapping")
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in config section {section!r}: {unknown}")
    kwargs = {
        name: _coerce(section, name, getattr(defaults, name), value)
        for name, value in data.items()
    }
    return cls(**kwargs)


def parse_config(data: dict[str, Any]) -> ExpenseAppConfig:
    """Parse a raw config mapping into an ``ExpenseAppConfig``."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown config sections: {unknown}")
    sections = {
        section: _parse_section(section, cls, data.get(section))
        for section, cls in _SECTIONS.items()
    }
    return ExpenseAppConfig(**sections, checksum=compute_checksum(data))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
