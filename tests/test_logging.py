"""Tests for the structured logging system (supply_kernel/logging_config.py)."""

import json
import logging
from io import StringIO

import pytest

from supply_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "supply_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("batch_adjusted", extra={"delta": -3, "barcode": "X1"})

        record = _parse_log(stream)
        assert record["delta"] == -3
        assert record["barcode"] == "X1"

    def test_decimal_extra_serialized(self):
        from decimal import Decimal

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("payment_created", extra={"net_amount": Decimal("12.50")})

        assert _parse_log(stream)["net_amount"] == "12.50"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", branch="Erbil")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["branch"] == "Erbil"

    def test_supply_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from supply_kernel.exceptions import InsufficientStockError

        try:
            raise InsufficientStockError("X1", "Slemany", 8, 3)
        except InsufficientStockError:
            get_logger("test").error("allocation_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_requested_quantity"] == 8
        assert record["exc_available_quantity"] == 3
        assert "traceback" in record


class TestLogContext:
    def test_bind_restores_previous_values(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")

        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner", actor_id="u1"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["operation"] == "inner"
        assert inside["actor_id"] == "u1"
        assert outside["operation"] == "outer"
        assert "actor_id" not in outside

    def test_clear(self):
        LogContext.set(counterparty_id="pharmacy-1")
        LogContext.clear()

        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        other, _ = _make_handler()
        configure_logging(handler=other)

        structured = [
            h for h in logging.getLogger("supply_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert structured == [handler]

    def test_does_not_propagate_to_root(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)

        assert logging.getLogger("supply_kernel").propagate is False
