"""
Credit Account

The per-user record the ledger gates against. Accounts are immutable
values; every mutation produces a new account via dataclasses.replace so
a rejected or conflicted write never leaks a half-updated object.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AccountRole(Enum):
    """Account roles. Only used to pick the starting grant."""
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class CreditAccount:
    """
    Credit balance plus the usage counters of the active windows.

    version is bumped on every committed write and is what conditioned
    writes compare against.
    """
    user_id: str
    balance: int
    daily_used: int
    monthly_used: int
    last_daily_reset: datetime
    last_monthly_reset: datetime
    version: int = 1
    role: AccountRole = AccountRole.USER
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def open(
        cls,
        user_id: str,
        balance: int,
        now: datetime,
        role: AccountRole = AccountRole.USER,
    ) -> "CreditAccount":
        """New account with fresh, unused windows starting at now."""
        return cls(
            user_id=user_id,
            balance=balance,
            daily_used=0,
            monthly_used=0,
            last_daily_reset=now,
            last_monthly_reset=now,
            version=1,
            role=role,
            created_at=now,
            updated_at=now,
        )

    def next_version(self, now: datetime, **changes: Any) -> "CreditAccount":
        """Copy with the given field changes, version + 1 and updated_at = now."""
        return replace(self, version=self.version + 1, updated_at=now, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": self.balance,
            "daily_used": self.daily_used,
            "monthly_used": self.monthly_used,
            "last_daily_reset": self.last_daily_reset.isoformat(),
            "last_monthly_reset": self.last_monthly_reset.isoformat(),
            "version": self.version,
            "role": self.role.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
