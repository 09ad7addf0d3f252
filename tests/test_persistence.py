"""
Tests for the Persistence Layer

SQL repositories and in-memory stores honor the same contract.
"""

import threading
import pytest
from datetime import datetime, timedelta, timezone

from core.account import AccountRole, CreditAccount
from persistence.database import Database
from persistence.models import CreditAccountRecord
from persistence.repository import AccountRepository, UsageStatRepository
from persistence.store import InMemoryUsageStatStore


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def account(user_id="user-1", balance=100, version=1, **kwargs):
    base = CreditAccount.open(user_id, balance, NOW, kwargs.pop("role", AccountRole.USER))
    return CreditAccount(**{**base.__dict__, "version": version, **kwargs})


class TestBalanceStoreContract:

    def test_load_missing(self, balance_store):
        assert balance_store.load("nobody") is None

    def test_create_then_load_round_trip(self, balance_store):
        original = account(role=AccountRole.ADMIN, daily_used=3, monthly_used=9)
        balance_store.create_if_absent(original)

        loaded = balance_store.load("user-1")

        assert loaded == original

    def test_first_write_wins(self, balance_store):
        balance_store.create_if_absent(account(balance=100))

        stored, created = balance_store.create_if_absent(account(balance=999))

        assert not created
        assert stored.balance == 100
        assert balance_store.load("user-1").balance == 100

    def test_conditioned_write_applies_on_matching_version(self, balance_store):
        balance_store.create_if_absent(account())
        current = balance_store.load("user-1")

        ok = balance_store.conditioned_write(current.next_version(NOW, balance=40, daily_used=60), 1)

        assert ok
        stored = balance_store.load("user-1")
        assert stored.balance == 40
        assert stored.daily_used == 60
        assert stored.version == 2

    def test_conditioned_write_rejects_stale_version(self, balance_store):
        balance_store.create_if_absent(account())
        first = balance_store.load("user-1")
        assert balance_store.conditioned_write(first.next_version(NOW, balance=90), 1)

        # Second writer computed from the same version 1
        stale = first.next_version(NOW, balance=50)

        assert not balance_store.conditioned_write(stale, 1)
        assert balance_store.load("user-1").balance == 90

    def test_conditioned_write_missing_account(self, balance_store):
        assert not balance_store.conditioned_write(account(user_id="ghost", version=2), 1)

    def test_version_must_advance_by_one(self, balance_store):
        balance_store.create_if_absent(account())

        with pytest.raises(ValueError):
            balance_store.conditioned_write(account(version=5), 1)

    def test_window_markers_round_trip(self, balance_store):
        later = NOW + timedelta(days=3, hours=5)
        balance_store.create_if_absent(account())
        current = balance_store.load("user-1")

        balance_store.conditioned_write(
            current.next_version(later, last_daily_reset=later, last_monthly_reset=later),
            1,
        )
        stored = balance_store.load("user-1")

        assert stored.last_daily_reset == later
        assert stored.last_monthly_reset == later
        assert stored.updated_at == later
        assert stored.created_at == NOW


class TestSqlSpecifics:

    def test_negative_balance_rejected_by_schema(self, temp_db):
        repo = AccountRepository(temp_db)
        repo.create_if_absent(account())
        current = repo.load("user-1")

        with pytest.raises(Exception):
            repo.conditioned_write(current.next_version(NOW, balance=-1), 1)

        assert repo.load("user-1").balance == 100

    def test_totals_empty(self, temp_db):
        totals = AccountRepository(temp_db).totals()

        assert totals == {
            "total_balance": 0,
            "total_daily_used": 0,
            "total_monthly_used": 0,
            "total_accounts": 0,
        }

    def test_memory_database_shared_across_threads(self):
        """sqlite:///:memory: keeps one database for every thread."""
        db = Database("sqlite:///:memory:")
        db.initialize()
        repo = AccountRepository(db)
        repo.create_if_absent(account())

        seen = []
        worker = threading.Thread(target=lambda: seen.append(repo.load("user-1")))
        worker.start()
        worker.join()

        assert seen[0] is not None
        assert seen[0].balance == 100
        db.close()

    def test_postgres_placeholders(self):
        db = Database("postgresql://localhost/credits")

        assert db.is_postgres
        assert db._adapt("SELECT * FROM t WHERE a = ? AND b = ?") == "SELECT * FROM t WHERE a = %s AND b = %s"

    def test_record_from_row_accepts_datetimes(self):
        """PostgreSQL returns TIMESTAMPTZ as datetime objects."""
        row = {
            "user_id": "user-1",
            "balance": 5,
            "daily_used": 1,
            "monthly_used": 2,
            "last_daily_reset": NOW,
            "last_monthly_reset": NOW,
            "version": 3,
            "role": "ADMIN",
            "created_at": NOW,
            "updated_at": NOW,
        }

        restored = CreditAccountRecord.from_row(row).to_account()

        assert restored.last_daily_reset == NOW
        assert restored.role == AccountRole.ADMIN
        assert restored.version == 3


@pytest.fixture(params=["memory", "sqlite"])
def stat_store(request, temp_db):
    if request.param == "memory":
        return InMemoryUsageStatStore()
    return UsageStatRepository(temp_db)


class TestUsageStatStore:

    def test_increment_creates_then_counts(self, stat_store):
        first = stat_store.increment("user-1", "job_parsing", NOW)
        later = NOW + timedelta(minutes=5)
        second = stat_store.increment("user-1", "job_parsing", later)

        assert first.count == 1
        assert second.count == 2
        assert second.last_used == later

    def test_get_by_user_sorted_and_scoped(self, stat_store):
        stat_store.increment("user-1", "resume_parsing", NOW)
        stat_store.increment("user-1", "email_parsing", NOW)
        stat_store.increment("user-2", "email_parsing", NOW)

        stats = stat_store.get_by_user("user-1")

        assert [s.service_type for s in stats] == ["email_parsing", "resume_parsing"]
        assert all(s.user_id == "user-1" for s in stats)
