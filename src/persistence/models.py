"""
Data Models for Persistence Layer

These models mirror the core domain objects but are optimized for database storage.
Timestamps are ISO-8601 strings in SQLite and TIMESTAMPTZ in PostgreSQL;
from_row accepts either.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Union

from core.account import AccountRole, CreditAccount
from .store import UsageStat


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


@dataclass
class CreditAccountRecord:
    """Persisted credit account row."""
    user_id: str
    balance: int
    daily_used: int
    monthly_used: int
    last_daily_reset: str
    last_monthly_reset: str
    version: int
    role: str
    created_at: str
    updated_at: str

    @classmethod
    def from_account(cls, account: CreditAccount) -> "CreditAccountRecord":
        created = account.created_at or account.last_daily_reset
        updated = account.updated_at or created
        return cls(
            user_id=account.user_id,
            balance=account.balance,
            daily_used=account.daily_used,
            monthly_used=account.monthly_used,
            last_daily_reset=format_timestamp(account.last_daily_reset),
            last_monthly_reset=format_timestamp(account.last_monthly_reset),
            version=account.version,
            role=account.role.value,
            created_at=format_timestamp(created),
            updated_at=format_timestamp(updated),
        )

    def to_account(self) -> CreditAccount:
        return CreditAccount(
            user_id=self.user_id,
            balance=self.balance,
            daily_used=self.daily_used,
            monthly_used=self.monthly_used,
            last_daily_reset=parse_timestamp(self.last_daily_reset),
            last_monthly_reset=parse_timestamp(self.last_monthly_reset),
            version=self.version,
            role=AccountRole(self.role),
            created_at=parse_timestamp(self.created_at),
            updated_at=parse_timestamp(self.updated_at),
        )

    def to_insert_tuple(self) -> tuple:
        """Column order of AccountRepository.INSERT_SQL."""
        return (
            self.user_id,
            self.balance,
            self.daily_used,
            self.monthly_used,
            self.last_daily_reset,
            self.last_monthly_reset,
            self.version,
            self.role,
            self.created_at,
            self.updated_at,
        )

    def to_update_tuple(self, expected_version: int) -> tuple:
        """Column order of AccountRepository.UPDATE_SQL."""
        return (
            self.balance,
            self.daily_used,
            self.monthly_used,
            self.last_daily_reset,
            self.last_monthly_reset,
            self.version,
            self.updated_at,
            self.user_id,
            expected_version,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CreditAccountRecord":
        return cls(
            user_id=row["user_id"],
            balance=row["balance"],
            daily_used=row.get("daily_used", 0),
            monthly_used=row.get("monthly_used", 0),
            last_daily_reset=row["last_daily_reset"],
            last_monthly_reset=row["last_monthly_reset"],
            version=row.get("version", 1),
            role=row.get("role", "USER"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def usage_stat_from_row(row: Dict[str, Any]) -> UsageStat:
    return UsageStat(
        user_id=row["user_id"],
        service_type=row["service_type"],
        count=row["count"],
        last_used=parse_timestamp(row["last_used"]),
    )
