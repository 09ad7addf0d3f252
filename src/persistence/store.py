"""
Storage Interfaces

The ledger is written against these narrow contracts rather than a
concrete database:

    load(user_id)                       -> account or None
    create_if_absent(account)           -> (stored account, created?)
    conditioned_write(account, version) -> True, or False on conflict

conditioned_write is the serialization point. It stores the new account
only if the stored version still equals expected_version; the new account
must carry expected_version + 1. Either the whole record is replaced or
nothing is, so a partially applied deduction can never be observed.

In-memory adapters live here too (tests, local development).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from core.account import CreditAccount


@dataclass(frozen=True)
class UsageStat:
    """Invocation counter for one (user, service type) pair."""
    user_id: str
    service_type: str
    count: int
    last_used: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "service_type": self.service_type,
            "count": self.count,
            "last_used": self.last_used.isoformat(),
        }


class BalanceStore(ABC):
    """Durable per-user credit account storage."""

    @abstractmethod
    def load(self, user_id: str) -> Optional[CreditAccount]:
        """Current account for the user, or None."""
        pass

    @abstractmethod
    def create_if_absent(self, account: CreditAccount) -> Tuple[CreditAccount, bool]:
        """
        Insert the account unless one already exists for the user.

        First write wins: returns (existing, False) when the user already
        has an account, (account, True) when this call created it.
        """
        pass

    @abstractmethod
    def conditioned_write(self, account: CreditAccount, expected_version: int) -> bool:
        """Replace the stored account if its version is expected_version."""
        pass

    @abstractmethod
    def list_accounts(self, limit: int = 50) -> List[CreditAccount]:
        """Accounts ordered by balance, highest first."""
        pass

    @abstractmethod
    def totals(self) -> Dict[str, int]:
        """Sums of balance/daily_used/monthly_used and the account count."""
        pass


class UsageStatStore(ABC):
    """Per (user, service type) invocation counters."""

    @abstractmethod
    def increment(self, user_id: str, service_type: str, at: datetime) -> UsageStat:
        pass

    @abstractmethod
    def get_by_user(self, user_id: str) -> List[UsageStat]:
        pass


class InMemoryBalanceStore(BalanceStore):
    """Dictionary-backed store. The lock makes each call an atomic compare-and-swap."""

    def __init__(self):
        self._accounts: Dict[str, CreditAccount] = {}
        self._lock = Lock()

    def load(self, user_id: str) -> Optional[CreditAccount]:
        with self._lock:
            return self._accounts.get(user_id)

    def create_if_absent(self, account: CreditAccount) -> Tuple[CreditAccount, bool]:
        with self._lock:
            existing = self._accounts.get(account.user_id)
            if existing is not None:
                return existing, False
            self._accounts[account.user_id] = account
            return account, True

    def conditioned_write(self, account: CreditAccount, expected_version: int) -> bool:
        if account.version != expected_version + 1:
            raise ValueError("New account version must be expected_version + 1")
        if account.balance < 0:
            raise ValueError("Account balance cannot be negative")

        with self._lock:
            current = self._accounts.get(account.user_id)
            if current is None or current.version != expected_version:
                return False
            self._accounts[account.user_id] = account
            return True

    def list_accounts(self, limit: int = 50) -> List[CreditAccount]:
        with self._lock:
            accounts = list(self._accounts.values())
        accounts.sort(key=lambda a: a.balance, reverse=True)
        return accounts[:limit]

    def totals(self) -> Dict[str, int]:
        with self._lock:
            accounts = list(self._accounts.values())
        return {
            "total_balance": sum(a.balance for a in accounts),
            "total_daily_used": sum(a.daily_used for a in accounts),
            "total_monthly_used": sum(a.monthly_used for a in accounts),
            "total_accounts": len(accounts),
        }


class InMemoryUsageStatStore(UsageStatStore):

    def __init__(self):
        self._stats: Dict[Tuple[str, str], UsageStat] = {}
        self._lock = Lock()

    def increment(self, user_id: str, service_type: str, at: datetime) -> UsageStat:
        key = (user_id, service_type)
        with self._lock:
            current = self._stats.get(key)
            if current is None:
                stat = UsageStat(user_id=user_id, service_type=service_type, count=1, last_used=at)
            else:
                stat = replace(current, count=current.count + 1, last_used=at)
            self._stats[key] = stat
            return stat

    def get_by_user(self, user_id: str) -> List[UsageStat]:
        with self._lock:
            stats = [s for (uid, _), s in self._stats.items() if uid == user_id]
        return sorted(stats, key=lambda s: s.service_type)
