"""
Pytest fixtures for the stock ledger test suite.

Provides:
- Session-wide structured logging and a ``captured_logs`` fixture
- A fresh SQLite database file per test (engine, tables, immutability
  listeners)
- A StockLedgerService wired to a DeterministicClock
- Product factories

Environment Variables:
- STOCK_LEDGER_TEST_DATABASE_URL: run against another database (e.g.
  PostgreSQL) instead of a temporary SQLite file.  Tables are dropped and
  recreated around each test.
"""

import json
import logging
import os
from io import StringIO
from uuid import uuid4

import pytest

from stock_ledger.config import LedgerSettings
from stock_ledger.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stock_ledger.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_ledger.domain.clock import DeterministicClock
from stock_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_ledger.services.stock_ledger_service import StockLedgerService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
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
            assert any(r["message"] == "adjustment_applied" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_ledger")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get(
        "STOCK_LEDGER_TEST_DATABASE_URL",
        f"sqlite:///{tmp_path / 'ledger.db'}",
    )


@pytest.fixture
def engine(database_url):
    """Fresh schema with immutability listeners registered."""
    engine = init_engine_from_url(database_url, busy_timeout_ms=30000)
    if "STOCK_LEDGER_TEST_DATABASE_URL" in os.environ:
        unregister_immutability_listeners()
        drop_tables()
    create_tables()
    register_immutability_listeners()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A plain session for direct reads and tamper attempts."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Clock that moves one second forward on every read."""
    return DeterministicClock(auto_advance=1)


@pytest.fixture
def ledger_settings(database_url):
    return LedgerSettings(
        database_url=database_url,
        lock_timeout_seconds=10.0,
        max_conflict_retries=5,
        retry_backoff_seconds=0.01,
    )


@pytest.fixture
def ledger(engine, deterministic_clock, ledger_settings):
    """StockLedgerService over the per-test database."""
    return StockLedgerService(clock=deterministic_clock, settings=ledger_settings)


@pytest.fixture
def make_product(ledger, test_actor_id):
    """
    Factory registering products with unique SKUs.

    Usage::

        product = make_product(unit="kg", initial_stock="5")
    """
    counter = {"n": 0}

    def _make(sku=None, name=None, unit="piece", min_quantity=None, initial_stock=0):
        counter["n"] += 1
        return ledger.register_product(
            sku=sku or f"SKU-{counter['n']:04d}",
            name=name or f"Test product {counter['n']}",
            unit=unit,
            actor_id=test_actor_id,
            min_quantity=min_quantity,
            initial_stock=initial_stock,
        )

    return _make
