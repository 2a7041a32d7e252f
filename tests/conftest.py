"""
Pytest fixtures for the supply engine test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path, or DATABASE_URL)
- Session, clock and config fixtures
- Ready-made services bound to one session, and a SupplyEngine
- Structured log capture

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  When unset, tests run on SQLite
  and tests marked ``postgres`` are skipped.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from supply_config import get_active_config
from supply_engines.allocation import FifoAllocator
from supply_kernel.db.engine import build_engine, create_tables, drop_tables
from supply_kernel.domain.clock import DeterministicClock
from supply_kernel.domain.dtos import BatchKey, BillLineSpec
from supply_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from supply_kernel.selectors.batch_selector import BatchSelector
from supply_kernel.selectors.document_selector import DocumentSelector
from supply_kernel.services.batch_ledger import BatchLedger
from supply_kernel.services.sequence_service import SequenceService
from supply_services.allocation_service import AllocationEngine
from supply_services.bill_service import BillService
from supply_services.engine import SupplyEngine
from supply_services.payment_reconciler import PaymentReconciler
from supply_services.transport_workflow import TransportWorkflow

TEST_ACTOR_ID = "test-user"

SLEMANY = "Slemany"
ERBIL = "Erbil"


def get_database_url() -> str | None:
    return os.environ.get("DATABASE_URL")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line("markers", "slow_locks: mark test as potentially waiting for DB locks")


def pytest_collection_modifyitems(config, items):
    url = get_database_url() or ""
    if url.startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


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
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture supply_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, bill_service):
            bill_service.create_sale_bill(...)
            assert any(r["message"] == "sale_bill_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("supply_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """One database per test: a throwaway SQLite file, or a reset DATABASE_URL."""
    url = get_database_url() or f"sqlite:///{tmp_path / 'supply.db'}"
    eng = build_engine(url, pool_size=20, max_overflow=10, pool_timeout=10)
    is_sqlite = eng.dialect.name == "sqlite"
    if not is_sqlite:
        drop_tables(eng)
    create_tables(eng)
    yield eng
    if not is_sqlite:
        drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session whose work is rolled back at teardown."""
    sess = session_factory()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


# =============================================================================
# Clock and config
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def config():
    return get_active_config()


@pytest.fixture
def test_actor_id() -> str:
    return TEST_ACTOR_ID


# =============================================================================
# Services bound to ``session``
# =============================================================================


@pytest.fixture
def ledger(session) -> BatchLedger:
    return BatchLedger(session, TEST_ACTOR_ID)


@pytest.fixture
def sequences(session) -> SequenceService:
    return SequenceService(session)


@pytest.fixture
def allocation(session, ledger) -> AllocationEngine:
    return AllocationEngine(session, TEST_ACTOR_ID, ledger=ledger, planner=FifoAllocator())


@pytest.fixture
def bill_service(session, config, deterministic_clock, allocation, sequences) -> BillService:
    return BillService(
        session, config, deterministic_clock, TEST_ACTOR_ID,
        allocation=allocation, sequences=sequences,
    )


@pytest.fixture
def transport_workflow(session, config, deterministic_clock, allocation, sequences) -> TransportWorkflow:
    return TransportWorkflow(
        session, config, deterministic_clock, TEST_ACTOR_ID,
        allocation=allocation, sequences=sequences,
    )


@pytest.fixture
def payment_reconciler(session, config, deterministic_clock, sequences) -> PaymentReconciler:
    return PaymentReconciler(session, config, deterministic_clock, TEST_ACTOR_ID, sequences=sequences)


@pytest.fixture
def batch_selector(session) -> BatchSelector:
    return BatchSelector(session)


@pytest.fixture
def document_selector(session) -> DocumentSelector:
    return DocumentSelector(session)


@pytest.fixture
def supply_engine(session_factory, config, deterministic_clock) -> SupplyEngine:
    """Engine that commits for real; do not mix with the ``session`` fixture."""
    return SupplyEngine(session_factory, config, deterministic_clock)


# =============================================================================
# Data helpers
# =============================================================================


@pytest.fixture
def add_stock(ledger):
    """
    Put units straight into a batch.

    Usage::

        key = add_stock("X1", quantity=5, expire_date=date(2025, 1, 1))
    """

    def _add(
        barcode: str = "X1",
        branch: str = SLEMANY,
        net_price: str = "100",
        out_price: str = "120",
        expire_date: date | None = None,
        quantity: int = 10,
        name: str = "Test item",
    ) -> BatchKey:
        key = BatchKey(
            barcode=barcode,
            branch=branch,
            net_price=Decimal(net_price),
            out_price=Decimal(out_price),
            expire_date=expire_date,
        )
        ledger.adjust_quantity(key, quantity, item_name=name)
        return key

    return _add


def line(
    barcode: str = "X1",
    quantity: int = 1,
    net_price: str = "100",
    out_price: str = "120",
    price: str | None = None,
    branch: str | None = None,
    expire_date: date | None = None,
    name: str = "",
) -> BillLineSpec:
    """Shorthand for a BillLineSpec with string prices."""
    return BillLineSpec(
        barcode=barcode,
        quantity=quantity,
        net_price=Decimal(net_price),
        out_price=Decimal(out_price),
        price=Decimal(price) if price is not None else None,
        name=name,
        branch=branch,
        expire_date=expire_date,
    )
