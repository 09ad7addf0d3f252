"""
Quota Window Policy

Daily and monthly windows follow the UTC calendar. A window has elapsed
when the UTC date (daily) or UTC year/month (monthly) of "now" differs from
that of the window's reset marker. Resets are lazy: nothing runs at the
boundary, the next access simply observes that the window moved on, so an
account idle for many windows resets exactly once.

Everything here is pure. Persisting a reset is the ledger's job.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone

from .account import CreditAccount


@dataclass(frozen=True)
class ResetDecision:
    """Which windows have elapsed for an account."""
    daily: bool = False
    monthly: bool = False

    @property
    def any(self) -> bool:
        return self.daily or self.monthly


def _utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def is_new_day(last_reset: datetime, now: datetime) -> bool:
    return _utc(last_reset).date() != _utc(now).date()


def is_new_month(last_reset: datetime, now: datetime) -> bool:
    last, current = _utc(last_reset), _utc(now)
    return (last.year, last.month) != (current.year, current.month)


def determine_resets(now: datetime, account: CreditAccount) -> ResetDecision:
    return ResetDecision(
        daily=is_new_day(account.last_daily_reset, now),
        monthly=is_new_month(account.last_monthly_reset, now),
    )


def remaining_allowance(used: int, limit: int) -> int:
    return max(0, limit - used)


def apply_resets(account: CreditAccount, decision: ResetDecision, now: datetime) -> CreditAccount:
    """
    Zero the counters of elapsed windows and move their markers to now.

    Returns the account unchanged when nothing elapsed. The version is not
    bumped here; the write that commits the reset does that.
    """
    if not decision.any:
        return account

    changes = {}
    if decision.daily:
        changes["daily_used"] = 0
        changes["last_daily_reset"] = now
    if decision.monthly:
        changes["monthly_used"] = 0
        changes["last_monthly_reset"] = now

    return replace(account, **changes)
