"""
Pytest fixtures for the stock ledger test suite.

Provides:
- A SQLite file database per test (tables created, listeners registered)
- Session factory, deterministic clock and a wired StockLedger
- Product factory and captured JSON logs

Every test gets its own database file under tmp_path, so threaded tests see
real SQLite locking and nothing leaks between tests.
"""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from stock_ledger.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stock_ledger.domain.clock import DeterministicClock
from stock_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_ledger.services.locking import ProductLockRegistry
from stock_ledger.services.stock_ledger import StockLedger

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.apply_adjustment(...)
            logs = captured_logs()
            assert any(r["message"] == "adjustment_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_ledger")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def db_engine(database_url):
    """Initialize the module-level engine with fresh tables."""
    init_engine_from_url(database_url, busy_timeout=10.0)
    create_tables()
    yield get_engine()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A plain session for direct reads in assertions."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Ledger fixtures
# =============================================================================


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def lock_registry():
    return ProductLockRegistry(timeout_seconds=5.0)


@pytest.fixture
def ledger(session_factory, deterministic_clock, lock_registry):
    return StockLedger(
        session_factory,
        clock=deterministic_clock,
        locks=lock_registry,
    )


@pytest.fixture
def adjustment_engine(ledger):
    return ledger.engine


@pytest.fixture
def make_product(ledger, test_actor_id):
    """
    Create products through the ledger.

    Defaults match the widget used across the scenarios: SKU WHD-001,
    20 on hand, min 20, max 100.
    """
    counter = {"n": 0}

    def _make(
        sku=None,
        initial_stock=20,
        min_stock=20,
        max_stock=100,
        **details,
    ):
        counter["n"] += 1
        return ledger.create_product(
            sku or f"WHD-{counter['n']:03d}",
            details.pop("name", f"Widget {counter['n']}"),
            test_actor_id,
            initial_stock=initial_stock,
            min_stock=min_stock,
            max_stock=max_stock,
            **details,
        )

    return _make
