"""
Repository Layer for Credit Rail

SQL implementations of the storage interfaces in store.py.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple
import structlog

from core.account import CreditAccount
from .database import Database, get_database
from .models import CreditAccountRecord, usage_stat_from_row, format_timestamp
from .store import BalanceStore, UsageStat, UsageStatStore

logger = structlog.get_logger()


class AccountRepository(BalanceStore):
    """
    Credit accounts in SQL.

    Conditioned writes are a single UPDATE guarded by the version column,
    so the database applies each write atomically and a stale writer simply
    matches zero rows.
    """

    INSERT_SQL = """INSERT INTO credit_accounts
               (user_id, balance, daily_used, monthly_used, last_daily_reset,
                last_monthly_reset, version, role, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (user_id) DO NOTHING"""

    UPDATE_SQL = """UPDATE credit_accounts
               SET balance = ?, daily_used = ?, monthly_used = ?,
                   last_daily_reset = ?, last_monthly_reset = ?,
                   version = ?, updated_at = ?
               WHERE user_id = ? AND version = ?"""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def load(self, user_id: str) -> Optional[CreditAccount]:
        results = self.db.execute(
            "SELECT * FROM credit_accounts WHERE user_id = ?",
            (user_id,)
        )
        return CreditAccountRecord.from_row(results[0]).to_account() if results else None

    def create_if_absent(self, account: CreditAccount) -> Tuple[CreditAccount, bool]:
        record = CreditAccountRecord.from_account(account)
        inserted = self.db.execute_write(self.INSERT_SQL, record.to_insert_tuple())

        if inserted:
            logger.info("credit_account_created", user_id=account.user_id, balance=account.balance)
            return account, True

        existing = self.load(account.user_id)
        if existing is None:
            # Row vanished between insert and read (external deletion)
            raise RuntimeError(f"Credit account for {account.user_id} disappeared during creation")
        return existing, False

    def conditioned_write(self, account: CreditAccount, expected_version: int) -> bool:
        if account.version != expected_version + 1:
            raise ValueError("New account version must be expected_version + 1")

        record = CreditAccountRecord.from_account(account)
        updated = self.db.execute_write(self.UPDATE_SQL, record.to_update_tuple(expected_version))
        if updated == 0:
            logger.debug("credit_account_version_mismatch", user_id=account.user_id, expected=expected_version)
        return updated == 1

    def list_accounts(self, limit: int = 50) -> List[CreditAccount]:
        results = self.db.execute(
            "SELECT * FROM credit_accounts ORDER BY balance DESC, user_id ASC LIMIT ?",
            (limit,)
        )
        return [CreditAccountRecord.from_row(r).to_account() for r in results]

    def totals(self) -> Dict[str, int]:
        results = self.db.execute(
            """SELECT
                COUNT(*) as total_accounts,
                SUM(balance) as total_balance,
                SUM(daily_used) as total_daily_used,
                SUM(monthly_used) as total_monthly_used
               FROM credit_accounts"""
        )
        row = results[0] if results else {}
        return {
            "total_balance": row.get("total_balance", 0) or 0,
            "total_daily_used": row.get("total_daily_used", 0) or 0,
            "total_monthly_used": row.get("total_monthly_used", 0) or 0,
            "total_accounts": row.get("total_accounts", 0) or 0,
        }


class UsageStatRepository(UsageStatStore):
    """Usage counters in SQL, incremented with a single upsert."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def increment(self, user_id: str, service_type: str, at: datetime) -> UsageStat:
        self.db.execute_write(
            """INSERT INTO usage_stats (user_id, service_type, count, last_used)
               VALUES (?, ?, 1, ?)
               ON CONFLICT (user_id, service_type)
               DO UPDATE SET count = usage_stats.count + 1, last_used = excluded.last_used""",
            (user_id, service_type, format_timestamp(at))
        )
        results = self.db.execute(
            "SELECT * FROM usage_stats WHERE user_id = ? AND service_type = ?",
            (user_id, service_type)
        )
        return usage_stat_from_row(results[0])

    def get_by_user(self, user_id: str) -> List[UsageStat]:
        results = self.db.execute(
            "SELECT * FROM usage_stats WHERE user_id = ? ORDER BY service_type ASC",
            (user_id,)
        )
        return [usage_stat_from_row(r) for r in results]
