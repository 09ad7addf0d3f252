"""
Credit Ledger

Gate-and-charge accounting for costed operations.

check_and_deduct is the single gate: it applies any lazy window reset,
checks balance then daily then monthly allowance, and commits the charge
with one conditioned write. Concurrency control is optimistic. Every write
names the version it was computed from; if another writer got there first
the write is rejected and the whole read-check-write is replayed against
the fresh account, a bounded number of times.

The ledger never runs the costed operation and never records usage
statistics. Callers do that after a successful deduction (see
enforcement.gate.CreditGate).
"""

import os
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar
import structlog

from core.account import AccountRole, CreditAccount
from core.catalog import CostCatalog
from core.clock import Clock, SystemClock
from core.errors import (
    AccountNotFoundError,
    InvalidAmountError,
    LedgerError,
    LedgerUnavailableError,
)
from core.quota import apply_resets, determine_resets, remaining_allowance
from persistence.store import BalanceStore

logger = structlog.get_logger()

T = TypeVar("T")


class FailureKind(Enum):
    """Expected business rejections of a deduction."""
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    MONTHLY_LIMIT_EXCEEDED = "MONTHLY_LIMIT_EXCEEDED"


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time view of an account against the catalog limits."""
    user_id: str
    balance: int
    daily_used: int
    monthly_used: int
    daily_remaining: int
    monthly_remaining: int
    daily_limit: int
    monthly_limit: int

    @classmethod
    def of(cls, account: CreditAccount, catalog: CostCatalog) -> "AccountSnapshot":
        return cls(
            user_id=account.user_id,
            balance=account.balance,
            daily_used=account.daily_used,
            monthly_used=account.monthly_used,
            daily_remaining=remaining_allowance(account.daily_used, catalog.daily_limit),
            monthly_remaining=remaining_allowance(account.monthly_used, catalog.monthly_limit),
            daily_limit=catalog.daily_limit,
            monthly_limit=catalog.monthly_limit,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": self.balance,
            "daily_used": self.daily_used,
            "monthly_used": self.monthly_used,
            "daily_remaining": self.daily_remaining,
            "monthly_remaining": self.monthly_remaining,
            "daily_limit": self.daily_limit,
            "monthly_limit": self.monthly_limit,
        }


@dataclass(frozen=True)
class DeductionResult:
    """
    Outcome of check_and_deduct.

    On success the snapshot is post-deduction. On rejection it reflects any
    window reset that was applied, but not the rejected charge.
    """
    allowed: bool
    snapshot: AccountSnapshot
    service_type: str
    cost: int
    failure: Optional[FailureKind] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "failure": self.failure.value if self.failure else None,
            "service_type": self.service_type,
            "cost": self.cost,
            "snapshot": self.snapshot.to_dict(),
        }


@dataclass(frozen=True)
class GrantResult:
    user_id: str
    new_balance: int
    created: bool = False


@dataclass(frozen=True)
class ProvisionResult:
    snapshot: AccountSnapshot
    created: bool


@dataclass
class LedgerConfig:
    """Retry policy for conflicted writes."""
    max_retries: int = 10
    retry_backoff_seconds: float = 0.002
    max_backoff_seconds: float = 0.05

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        return cls(
            max_retries=int(os.environ.get("LEDGER_MAX_RETRIES", 10)),
            retry_backoff_seconds=float(os.environ.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.002)),
        )


class CreditLedger:
    """
    The credit ledger.

    Flow of check_and_deduct:
    1. Load account (absent -> AccountNotFoundError)
    2. Apply elapsed daily/monthly window resets to a working copy
    3. Resolve cost (unknown -> UnknownServiceError)
    4. Check balance, then daily, then monthly allowance
    5. Commit charge and/or reset with one conditioned write
    6. Return DeductionResult with the committed snapshot
    """

    def __init__(
        self,
        store: BalanceStore,
        catalog: Optional[CostCatalog] = None,
        clock: Optional[Clock] = None,
        config: Optional[LedgerConfig] = None,
    ):
        self.store = store
        self.catalog = catalog or CostCatalog()
        self.clock = clock or SystemClock()
        self.config = config or LedgerConfig()

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def check_and_deduct(self, user_id: str, service_type: str) -> DeductionResult:
        """Atomically check allowance and charge one invocation of service_type."""
        for attempt in range(self.config.max_retries + 1):
            account = self._load_existing(user_id)
            now = self.clock.now()

            resets = determine_resets(now, account)
            working = apply_resets(account, resets, now)
            cost = self.catalog.cost_of(service_type)

            failure = self._evaluate(working, cost)
            if failure is None:
                committed = working.next_version(
                    now,
                    balance=working.balance - cost,
                    daily_used=working.daily_used + cost,
                    monthly_used=working.monthly_used + cost,
                )
            elif resets.any:
                # Persist the reset on its own so a rejection does not lose it
                committed = working.next_version(now)
            else:
                committed = None

            if committed is not None and not self._write(committed, account.version):
                self._backoff(user_id, attempt)
                continue

            if resets.any:
                logger.info(
                    "window_reset_applied",
                    user_id=user_id,
                    daily=resets.daily,
                    monthly=resets.monthly,
                )

            snapshot = AccountSnapshot.of(committed or account, self.catalog)

            if failure is None:
                logger.info(
                    "credits_deducted",
                    user_id=user_id,
                    service_type=service_type,
                    cost=cost,
                    balance=snapshot.balance,
                    daily_used=snapshot.daily_used,
                    monthly_used=snapshot.monthly_used,
                )
                return DeductionResult(
                    allowed=True,
                    snapshot=snapshot,
                    service_type=service_type,
                    cost=cost,
                )

            logger.info(
                "deduction_rejected",
                user_id=user_id,
                service_type=service_type,
                cost=cost,
                failure=failure.value,
                balance=snapshot.balance,
            )
            return DeductionResult(
                allowed=False,
                snapshot=snapshot,
                service_type=service_type,
                cost=cost,
                failure=failure,
            )

        raise self._exhausted(user_id, "check_and_deduct")

    def _evaluate(self, account: CreditAccount, cost: int) -> Optional[FailureKind]:
        if account.balance < cost:
            return FailureKind.INSUFFICIENT_BALANCE
        if account.daily_used + cost > self.catalog.daily_limit:
            return FailureKind.DAILY_LIMIT_EXCEEDED
        if account.monthly_used + cost > self.catalog.monthly_limit:
            return FailureKind.MONTHLY_LIMIT_EXCEEDED
        return None

    # ------------------------------------------------------------------
    # Grants and provisioning
    # ------------------------------------------------------------------

    def grant(self, user_id: str, amount: int) -> GrantResult:
        """
        Add credits to a balance, creating the account if it does not exist.

        Creation and update are separate branches. If a concurrent writer
        creates the account first, this grant is applied to theirs.
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidAmountError(amount)

        for attempt in range(self.config.max_retries + 1):
            now = self.clock.now()
            account = self._store_call("load", self.store.load, user_id)

            if account is None:
                opened = CreditAccount.open(user_id, amount, now)
                account, created = self._store_call("create_if_absent", self.store.create_if_absent, opened)
                if created:
                    logger.info("credits_granted", user_id=user_id, amount=amount, balance=amount, created=True)
                    return GrantResult(user_id=user_id, new_balance=amount, created=True)

            updated = account.next_version(now, balance=account.balance + amount)
            if self._write(updated, account.version):
                logger.info("credits_granted", user_id=user_id, amount=amount, balance=updated.balance, created=False)
                return GrantResult(user_id=user_id, new_balance=updated.balance)

            self._backoff(user_id, attempt)

        raise self._exhausted(user_id, "grant")

    def provision(self, user_id: str, role: AccountRole = AccountRole.USER) -> ProvisionResult:
        """
        Open an account with the role's starting grant.

        First write wins: an existing account keeps its balance and this
        call just reports its current status.
        """
        opened = CreditAccount.open(user_id, self.catalog.starting_grant(role), self.clock.now(), role)
        stored, created = self._store_call("create_if_absent", self.store.create_if_absent, opened)

        if created:
            logger.info("account_provisioned", user_id=user_id, role=role.value, balance=stored.balance)
            return ProvisionResult(snapshot=AccountSnapshot.of(stored, self.catalog), created=True)

        return ProvisionResult(snapshot=self.status(user_id), created=False)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def status(self, user_id: str) -> AccountSnapshot:
        """
        Current snapshot. Commits any pending window reset first, so
        counters read as zero after a boundary even without a deduction.
        """
        for attempt in range(self.config.max_retries + 1):
            account = self._load_existing(user_id)
            now = self.clock.now()
            resets = determine_resets(now, account)

            if not resets.any:
                return AccountSnapshot.of(account, self.catalog)

            reset = apply_resets(account, resets, now).next_version(now)
            if self._write(reset, account.version):
                logger.info(
                    "window_reset_applied",
                    user_id=user_id,
                    daily=resets.daily,
                    monthly=resets.monthly,
                )
                return AccountSnapshot.of(reset, self.catalog)

            self._backoff(user_id, attempt)

        raise self._exhausted(user_id, "status")

    def overview(self, limit: int = 50) -> Dict[str, Any]:
        """Accounts ranked by balance plus ledger-wide totals (stored counters, no resets applied)."""
        accounts: List[CreditAccount] = self._store_call("list_accounts", self.store.list_accounts, limit)
        totals: Dict[str, int] = self._store_call("totals", self.store.totals)

        return {
            "ranking": [
                {
                    "rank": index + 1,
                    "user_id": account.user_id,
                    "role": account.role.value,
                    "balance": account.balance,
                    "daily_used": account.daily_used,
                    "monthly_used": account.monthly_used,
                }
                for index, account in enumerate(accounts)
            ],
            "stats": totals,
        }

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _load_existing(self, user_id: str) -> CreditAccount:
        account = self._store_call("load", self.store.load, user_id)
        if account is None:
            raise AccountNotFoundError(user_id)
        return account

    def _write(self, account: CreditAccount, expected_version: int) -> bool:
        return self._store_call("conditioned_write", self.store.conditioned_write, account, expected_version)

    def _store_call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Run a store call, converting storage failures into LedgerUnavailableError."""
        try:
            return fn(*args)
        except LedgerError:
            raise
        except Exception as e:
            logger.error("ledger_store_error", operation=operation, error=str(e), error_type=type(e).__name__)
            raise LedgerUnavailableError() from e

    def _backoff(self, user_id: str, attempt: int) -> None:
        logger.debug("ledger_write_conflict", user_id=user_id, attempt=attempt + 1)
        if self.config.retry_backoff_seconds > 0:
            delay = min(self.config.max_backoff_seconds, self.config.retry_backoff_seconds * (2 ** attempt))
            time.sleep(random.uniform(0, delay))

    def _exhausted(self, user_id: str, operation: str) -> LedgerUnavailableError:
        logger.error(
            "ledger_retries_exhausted",
            user_id=user_id,
            operation=operation,
            max_retries=self.config.max_retries,
        )
        return LedgerUnavailableError()
