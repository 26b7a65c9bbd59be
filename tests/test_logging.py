"""Tests for the structured logging system (expense_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from expense_kernel.domain.approval import SequenceType
from expense_kernel.exceptions import DecisionConflictError
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "expense_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        rule_id = uuid4()

        get_logger("test").info(
            "rule_created",
            extra={
                "rule_id_extra": rule_id,
                "amount": Decimal("12.50"),
                "sequence_type": SequenceType.PARALLEL,
                "fields": ("name", "priority"),
            },
        )

        record = _parse_all_logs(stream)[0]
        assert record["rule_id_extra"] == str(rule_id)
        assert record["amount"] == "12.50"
        assert record["sequence_type"] == "parallel"
        assert record["fields"] == ["name", "priority"]

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise DecisionConflictError("exp-1", 3)
        except DecisionConflictError:
            get_logger("test").warning("failed", exc_info=True)

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "DecisionConflictError"
        assert record["exc_code"] == "DECISION_CONFLICT"
        assert record["exc_expense_id"] == "exp-1"
        assert record["exc_expected_version"] == 3
        assert "Traceback" in record["traceback"]


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        tenant_id = uuid4()

        LogContext.set(tenant_id=tenant_id, correlation_id="req-1")
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["tenant_id"] == str(tenant_id)
        assert record["correlation_id"] == "req-1"

    def test_bind_restores_on_exit(self):
        LogContext.set(actor_id="outer")

        with LogContext.bind(actor_id="inner", expense_id="e-1"):
            assert LogContext.get_all()["actor_id"] == "inner"
            assert LogContext.get_all()["expense_id"] == "e-1"

        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_ignores_unknown_and_none(self):
        with LogContext.bind(unknown="x", rule_id=None, tenant_id="t"):
            assert LogContext.get_all() == {"tenant_id": "t"}

    def test_clear(self):
        LogContext.set(tenant_id="t", rule_id="r")

        LogContext.clear()

        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=_make_handler()[0])

        assert logging.getLogger("expense_kernel").handlers == [handler]

    def test_level_respected(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)

        get_logger("test").info("quiet")
        get_logger("test").warning("loud")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["loud"]

    def test_does_not_propagate_to_root(self):
        configure_logging(handler=_make_handler()[0])

        assert logging.getLogger("expense_kernel").propagate is False
