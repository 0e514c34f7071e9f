"""
Pytest fixtures for the CMMS kernel test suite.

Provides:
- In-memory SQLite engine (StaticPool) with all tables, one per test
- File-backed SQLite engine for real multi-thread concurrency tests
- Services wired through one AtomicRetry with a no-op backoff sleeper
- Item and PM schedule factories
- Structured log capture

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL for tests marked ``postgres``.
"""

import json
import logging
import os
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from cmms_batch.domain.types import GenerationPolicy, ScheduleFrequency
from cmms_batch.services.generator import PMWorkOrderGenerator
from cmms_batch.services.schedules import PMScheduleService
from cmms_kernel.db.engine import build_engine, create_tables, drop_tables, session_scope
from cmms_kernel.db.immutability import register_immutability_listeners
from cmms_kernel.domain.clock import DeterministicClock
from cmms_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from cmms_kernel.selectors.stock_selector import StockSelector
from cmms_kernel.services.inventory_service import InventoryService
from cmms_kernel.services.retry import AtomicRetry, RetryPolicy
from cmms_kernel.services.stock_ledger import StockLedgerService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Fixed "now" for every deterministic clock
FIXED_NOW = datetime(2026, 3, 2, 8, 0, 0, tzinfo=UTC)


def pytest_collection_modifyitems(config, items):
    """Skip ``postgres`` tests unless DATABASE_URL points at PostgreSQL."""
    if os.environ.get("DATABASE_URL", "").startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="DATABASE_URL does not point at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _json_logging():
    """Kernel logs go to a throwaway stream at DEBUG so every log call is exercised."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _fresh_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Records logged under ``cmms_kernel`` during the test, as dicts.

        logs = captured_logs()
        assert any(r["message"] == "stock_transaction_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger("cmms_kernel")
    kernel_logger.addHandler(handler)

    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines() if line]

    kernel_logger.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    register_immutability_listeners()
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database shared by several threads."""
    eng = build_engine(f"sqlite:///{tmp_path / 'cmms.db'}", sqlite_busy_timeout=30.0)
    create_tables(eng)
    register_immutability_listeners()
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
def stock_queries(session_factory):
    """Open a StockSelector on a fresh session: ``with stock_queries() as q:``."""

    @contextmanager
    def _open():
        with session_scope(session_factory) as session:
            yield StockSelector(session)

    return _open


# =============================================================================
# Clock and services
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=5, initial_wait_seconds=0.0, max_wait_seconds=0.0)


@pytest.fixture
def atomic(session_factory, retry_policy):
    return AtomicRetry(session_factory, retry_policy, sleep=lambda _: None)


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def ledger(atomic, deterministic_clock):
    return StockLedgerService(atomic, deterministic_clock)


@pytest.fixture
def inventory(atomic, deterministic_clock):
    return InventoryService(atomic, deterministic_clock)


@pytest.fixture
def generation_policy():
    return GenerationPolicy(max_items_per_run=500, default_limit=50)


@pytest.fixture
def schedule_service(atomic, deterministic_clock, generation_policy):
    return PMScheduleService(atomic, deterministic_clock, generation_policy)


@pytest.fixture
def generator(atomic, deterministic_clock, generation_policy):
    return PMWorkOrderGenerator(atomic, deterministic_clock, generation_policy)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_item(inventory, ledger, test_actor_id):
    """
    Create an item; ``on_hand`` > 0 books opening stock as a PURCHASE.

    Returns the item DTO after the opening purchase.
    """

    def _make(on_hand="0", unit_cost="2.50", **kwargs):
        kwargs.setdefault("name", "Hydraulic filter")
        item = inventory.create_item(actor_id=test_actor_id, unit_cost=Decimal(unit_cost), **kwargs)
        if Decimal(on_hand) > 0:
            item = ledger.record_purchase(
                item.id, Decimal(on_hand), Decimal(unit_cost), "OPENING", test_actor_id,
            ).item
        return item

    return _make


@pytest.fixture
def make_schedule(schedule_service, test_actor_id):
    """Create a PM schedule due one day after FIXED_NOW (inside the 7-day lead)."""

    def _make(**kwargs):
        kwargs.setdefault("title", "Lubricate conveyor bearings")
        kwargs.setdefault("equipment_id", "EQ-100")
        kwargs.setdefault("equipment_name", "Main conveyor")
        kwargs.setdefault("frequency", ScheduleFrequency.MONTHLY)
        kwargs.setdefault("next_due_date", FIXED_NOW + timedelta(days=1))
        return schedule_service.create_schedule(actor_id=test_actor_id, **kwargs)

    return _make
