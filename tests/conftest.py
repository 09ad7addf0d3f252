"""
Pytest Configuration and Fixtures
"""

import os
import sys
import pytest
import tempfile
from datetime import datetime, timezone

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

# Set test environment
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["API_KEY"] = "test-key-12345"
os.environ.pop("CREDIT_CATALOG_PATH", None)

from billing.ledger import CreditLedger, LedgerConfig
from billing.usage import UsageRecorder
from core.catalog import CostCatalog, QuotaLimits
from core.clock import FixedClock
from persistence.database import Database
from persistence.repository import AccountRepository, UsageStatRepository
from persistence.store import InMemoryBalanceStore, InMemoryUsageStatStore


@pytest.fixture
def temp_db():
    """Create a temporary SQLite database file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(f"sqlite:///{db_path}")
    db.initialize()

    yield db

    db.close()
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def clock():
    """Clock frozen mid-month, mid-day (UTC)."""
    return FixedClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def catalog():
    """Catalog with a simple test service alongside the defaults."""
    return CostCatalog(
        costs={
            "interview_analysis": 10,
            "audio_transcription": 5,
            "service_x": 50,
            "big_job": 300,
        },
        limits=QuotaLimits(daily_limit=200, monthly_limit=2000),
    )


@pytest.fixture(params=["memory", "sqlite"])
def balance_store(request, temp_db):
    """Every ledger test runs against both store adapters."""
    if request.param == "memory":
        return InMemoryBalanceStore()
    return AccountRepository(temp_db)


@pytest.fixture
def usage_store(temp_db):
    return UsageStatRepository(temp_db)


@pytest.fixture
def ledger(balance_store, catalog, clock):
    return CreditLedger(
        store=balance_store,
        catalog=catalog,
        clock=clock,
        config=LedgerConfig(max_retries=50, retry_backoff_seconds=0.001),
    )


@pytest.fixture
def usage_recorder(catalog, clock):
    return UsageRecorder(store=InMemoryUsageStatStore(), catalog=catalog, clock=clock)
