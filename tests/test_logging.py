"""Tests for the structured logging system (stock_ledger/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_ledger.domain.dtos import MovementType
from stock_ledger.exceptions import InsufficientStockError
from stock_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)

log = get_logger("tests.logging")


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Start each test unconfigured; afterwards restore the suite's DEBUG setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def buffer():
    return StringIO()


@pytest.fixture
def lines(buffer):
    """Configure ledger logging into ``buffer`` and return a reader of parsed lines."""
    configure_logging(stream=buffer)
    return lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestPayload:
    def test_envelope(self, lines):
        log.info("hello")

        (record,) = lines()
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "stock_ledger.tests.logging"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields_merged(self, lines):
        log.info("adjustment_committed", extra={"quantity_after": 17, "duration_ms": 1.5})

        (record,) = lines()
        assert record["quantity_after"] == 17
        assert record["duration_ms"] == 1.5

    def test_ledger_types_serialized(self, lines):
        movement_id = uuid4()
        log.info(
            "valued",
            extra={
                "movement_id": movement_id,
                "unit_cost": Decimal("2.50"),
                "movement_type": MovementType.SALE,
            },
        )

        (record,) = lines()
        assert record["movement_id"] == str(movement_id)
        assert record["unit_cost"] == "2.50"
        assert record["movement_type"] == "sale"

    def test_bound_context_merged(self, lines):
        with LogContext.bind(correlation_id="corr-1", product_id="prod-1", operation="reserve"):
            log.info("reservation_created")
        log.info("after")

        first, second = lines()
        assert first["correlation_id"] == "corr-1"
        assert first["operation"] == "reserve"
        assert "correlation_id" not in second

    def test_context_beats_extra(self, lines):
        LogContext.set(product_id="from-context")
        log.info("clash", extra={"product_id": "from-extra"})

        assert lines()[0]["product_id"] == "from-context"

    def test_plain_exception(self, lines):
        try:
            raise KeyError("sku")
        except KeyError:
            log.error("lookup_failed", exc_info=True)

        (record,) = lines()
        assert record["exc_type"] == "KeyError"
        assert "Traceback" in record["traceback"]
        assert "exc_code" not in record

    def test_ledger_exception_attributes(self, lines):
        try:
            raise InsufficientStockError("prod-1", 2, -5)
        except InsufficientStockError:
            log.warning("adjustment_rejected", exc_info=True)

        (record,) = lines()
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_retryable"] is False
        assert record["exc_current_stock"] == 2
        assert record["exc_quantity_change"] == -5


class TestLogContext:
    def test_set_skips_none(self):
        LogContext.set(actor_id="actor-1")
        LogContext.set(actor_id=None, operation="reserve")
        assert LogContext.get_all() == {"actor_id": "actor-1", "operation": "reserve"}

    def test_bind_restores_outer_values(self):
        LogContext.set(product_id="outer")
        with LogContext.bind(product_id="inner", reference_id="ORD-1") as ctx:
            assert ctx.get_all() == {"product_id": "inner", "reference_id": "ORD-1"}
        assert LogContext.get_all() == {"product_id": "outer"}

    def test_nested_bind(self):
        with LogContext.bind(correlation_id="a"):
            with LogContext.bind(correlation_id="b", actor_id="x"):
                assert LogContext.get_all() == {"correlation_id": "b", "actor_id": "x"}
            assert LogContext.get_all() == {"correlation_id": "a"}
        assert LogContext.get_all() == {}

    def test_values_are_stringified(self):
        product_id = uuid4()
        with LogContext.bind(product_id=product_id):
            assert LogContext.get_all()["product_id"] == str(product_id)

    def test_unknown_names_ignored(self):
        LogContext.set(warehouse="north")
        with LogContext.bind(bin="A-3"):
            assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_second_call_is_ignored(self, buffer):
        configure_logging(stream=buffer)
        configure_logging(stream=StringIO())
        ours = [
            h
            for h in logging.getLogger("stock_ledger").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert len(ours) == 1
        assert ours[0].stream is buffer

    def test_level_filters(self, buffer):
        configure_logging(level=logging.WARNING, stream=buffer)
        log.info("dropped")
        log.warning("kept")

        assert [json.loads(line)["message"] for line in buffer.getvalue().splitlines()] == ["kept"]

    def test_explicit_handler(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream))
        log.info("via_handler")
        assert json.loads(stream.getvalue())["message"] == "via_handler"

    def test_records_stay_in_namespace(self, lines):
        assert logging.getLogger("stock_ledger").propagate is False
