"""
Tests for configuration loading and bootstrap wiring.

Tests cover:
- get_active_config: packaged default, explicit path, EXPENSE_CONFIG_PATH
- Environment overrides and type coercion
- Unknown sections/keys rejected
- Deterministic checksum and the expense_config_loaded log entry
- bootstrap: collaborators built (or left out) according to the config
"""

from pathlib import Path
from uuid import uuid4

import pytest
import yaml

from expense_config import CONFIG_PATH_ENV, get_active_config
from expense_config.loader import compute_checksum, parse_config
from expense_kernel.domain.identity import UserRecord, UserRole
from expense_services.bootstrap import (
    build_coordinator,
    build_notifier,
    build_rate_cache,
    build_receipt_parser,
)
from expense_services.expense_lifecycle import ExpenseLifecycleCoordinator
from expense_services.receipt_service import ReceiptParser


def write_config(tmp_path: Path, data: dict, name: str = "config.yaml") -> Path:
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestGetActiveConfig:

    def test_packaged_default(self):
        config = get_active_config(environ={})

        assert config.database.url.startswith("postgresql+psycopg://")
        assert config.currency.cache_ttl_seconds == 3600
        assert config.receipts.enabled is False
        assert config.notifications.smtp_port == 587
        assert config.logging.level == "INFO"

    def test_explicit_path(self, tmp_path):
        path = write_config(tmp_path, {"database": {"url": "sqlite:///x.db"}})

        config = get_active_config(path, environ={})

        assert config.database.url == "sqlite:///x.db"
        assert config.database.pool_size == 20

    def test_path_from_environment(self, tmp_path):
        path = write_config(tmp_path, {"logging": {"level": "DEBUG"}})

        config = get_active_config(environ={CONFIG_PATH_ENV: str(path)})

        assert config.logging.level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml", environ={})

    def test_env_overrides_with_coercion(self, tmp_path):
        path = write_config(tmp_path, {"notifications": {"enabled": "yes"}})

        config = get_active_config(
            path,
            environ={
                "DATABASE_URL": "sqlite:///override.db",
                "SMTP_PORT": "2525",
                "OCR_ENDPOINT": "https://ocr.test",
            },
        )

        assert config.database.url == "sqlite:///override.db"
        assert config.notifications.smtp_port == 2525
        assert config.notifications.enabled is True
        assert config.receipts.endpoint == "https://ocr.test"

    def test_empty_env_value_ignored(self, tmp_path):
        path = write_config(tmp_path, {"database": {"url": "sqlite:///keep.db"}})

        config = get_active_config(path, environ={"DATABASE_URL": ""})

        assert config.database.url == "sqlite:///keep.db"

    def test_logs_source_and_checksum(self, tmp_path, captured_logs):
        path = write_config(tmp_path, {})

        config = get_active_config(path, environ={})

        loaded = [r for r in captured_logs() if r["message"] == "expense_config_loaded"]
        assert loaded[0]["config_path"] == str(path)
        assert loaded[0]["checksum"] == config.checksum


class TestParseConfig:

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown config sections"):
            parse_config({"cache": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown keys"):
            parse_config({"database": {"uri": "x"}})

    @pytest.mark.parametrize(
        "section, key, value",
        [
            ("database", "pool_size", "many"),
            ("database", "pool_size", True),
            ("notifications", "use_tls", "maybe"),
            ("currency", "timeout_seconds", "soon"),
        ],
    )
    def test_bad_values(self, section, key, value):
        with pytest.raises(ValueError, match=f"{section}.{key}"):
            parse_config({section: {key: value}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            parse_config({"logging": "DEBUG"})

    def test_checksum_is_deterministic(self):
        a = {"database": {"url": "x", "echo": False}, "logging": {"level": "INFO"}}
        b = {"logging": {"level": "INFO"}, "database": {"echo": False, "url": "x"}}

        assert compute_checksum(a) == compute_checksum(b)
        assert parse_config(a).checksum == parse_config(b).checksum
        assert compute_checksum(a) != compute_checksum({"database": {"url": "y"}})

    def test_config_is_frozen(self):
        config = parse_config({})

        with pytest.raises(AttributeError):
            config.database.url = "other"  # type: ignore[misc]


class TestBootstrap:

    def test_receipt_parser_only_when_enabled_with_endpoint(self):
        assert build_receipt_parser(parse_config({"receipts": {"enabled": True}})) is None
        assert build_receipt_parser(parse_config({"receipts": {"endpoint": "https://ocr"}})) is None

        parser = build_receipt_parser(
            parse_config({"receipts": {"enabled": True, "endpoint": "https://ocr"}})
        )
        assert isinstance(parser, ReceiptParser)

    def test_notifier_without_smtp_when_disabled(self):
        notifier = build_notifier(parse_config({}))
        user = UserRecord(uuid4(), uuid4(), "U", "u@x.test", UserRole.EMPLOYEE)

        assert notifier.send_invitation(user, "Acme") is False

    def test_rate_cache_ttl_from_config(self):
        cache = build_rate_cache(parse_config({"currency": {"cache_ttl_seconds": 60}}))

        assert cache.ttl_seconds == 60

    def test_build_coordinator(self, session, deterministic_clock):
        coordinator = build_coordinator(session, parse_config({}), clock=deterministic_clock)

        assert isinstance(coordinator, ExpenseLifecycleCoordinator)
