"""
Tests for Quota Window Policy

Windows follow the UTC calendar and reset lazily.
"""

import pytest
from datetime import datetime, timedelta, timezone

from core.account import CreditAccount
from core.quota import (
    ResetDecision,
    apply_resets,
    determine_resets,
    is_new_day,
    is_new_month,
    remaining_allowance,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def make_account(last_daily, last_monthly, daily_used=120, monthly_used=900):
    return CreditAccount(
        user_id="user-1",
        balance=1000,
        daily_used=daily_used,
        monthly_used=monthly_used,
        last_daily_reset=last_daily,
        last_monthly_reset=last_monthly,
        version=7,
    )


class TestWindowBoundaries:
    """Calendar-day and calendar-month comparisons."""

    def test_same_day_not_new(self):
        assert not is_new_day(utc(2025, 3, 15, 0, 0), utc(2025, 3, 15, 23, 59, 59))

    def test_midnight_crossing_is_new_day(self):
        """Crossing midnight is a new day even if less than 24h elapsed."""
        assert is_new_day(utc(2025, 3, 15, 23, 59), utc(2025, 3, 16, 0, 1))

    def test_same_day_of_month_in_other_month_is_new_day(self):
        assert is_new_day(utc(2025, 2, 15, 12), utc(2025, 3, 15, 12))

    def test_same_month_other_year_is_new_month(self):
        assert is_new_month(utc(2024, 3, 15), utc(2025, 3, 15))

    def test_month_crossing(self):
        assert is_new_month(utc(2025, 3, 31, 23, 59), utc(2025, 4, 1, 0, 0))
        assert not is_new_month(utc(2025, 3, 1, 0, 0), utc(2025, 3, 31, 23, 59))

    def test_comparison_uses_utc_calendar(self):
        """Non-UTC offsets are normalized before comparing dates."""
        tz_plus_9 = timezone(timedelta(hours=9))
        # 2025-03-16 08:00 at +09:00 is still 2025-03-15 23:00 UTC
        local = datetime(2025, 3, 16, 8, 0, tzinfo=tz_plus_9)
        assert not is_new_day(utc(2025, 3, 15, 1, 0), local)

    def test_naive_datetimes_treated_as_utc(self):
        assert is_new_day(datetime(2025, 3, 15, 23), utc(2025, 3, 16, 1))


class TestDetermineResets:

    def test_nothing_elapsed(self):
        account = make_account(utc(2025, 3, 15, 8), utc(2025, 3, 1))
        decision = determine_resets(utc(2025, 3, 15, 20), account)

        assert decision == ResetDecision(daily=False, monthly=False)
        assert not decision.any

    def test_next_day_same_month(self):
        account = make_account(utc(2025, 3, 15, 8), utc(2025, 3, 1))
        decision = determine_resets(utc(2025, 3, 16, 8), account)

        assert decision.daily
        assert not decision.monthly

    def test_forty_days_stale_resets_both(self):
        now = utc(2025, 3, 15, 12)
        stale = now - timedelta(days=40)
        decision = determine_resets(now, make_account(stale, stale))

        assert decision.daily
        assert decision.monthly

    def test_is_pure(self):
        account = make_account(utc(2025, 3, 14), utc(2025, 2, 1))
        determine_resets(utc(2025, 3, 15), account)

        assert account.daily_used == 120
        assert account.monthly_used == 900


class TestApplyResets:

    def test_daily_only(self):
        now = utc(2025, 3, 16, 9)
        account = make_account(utc(2025, 3, 15), utc(2025, 3, 1))
        reset = apply_resets(account, ResetDecision(daily=True), now)

        assert reset.daily_used == 0
        assert reset.last_daily_reset == now
        assert reset.monthly_used == 900
        assert reset.last_monthly_reset == utc(2025, 3, 1)
        # Version is bumped by the committing write, not here
        assert reset.version == account.version

    def test_both_windows(self):
        now = utc(2025, 4, 2)
        account = make_account(utc(2025, 3, 15), utc(2025, 3, 1))
        reset = apply_resets(account, ResetDecision(daily=True, monthly=True), now)

        assert reset.daily_used == 0
        assert reset.monthly_used == 0
        assert reset.last_monthly_reset == now

    def test_no_decision_returns_same_account(self):
        account = make_account(utc(2025, 3, 15), utc(2025, 3, 1))
        assert apply_resets(account, ResetDecision(), utc(2025, 3, 15, 18)) is account


class TestRemainingAllowance:

    @pytest.mark.parametrize("used,limit,expected", [
        (0, 200, 200),
        (150, 200, 50),
        (200, 200, 0),
        (250, 200, 0),
    ])
    def test_never_negative(self, used, limit, expected):
        assert remaining_allowance(used, limit) == expected
