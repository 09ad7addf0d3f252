"""
CREDIT RAIL - Core Module

Accounts, pricing, quota windows and time. No I/O lives here.
"""

from .account import AccountRole, CreditAccount
from .catalog import CostCatalog, QuotaLimits
from .clock import Clock, SystemClock, FixedClock
from .quota import ResetDecision, determine_resets, remaining_allowance, apply_resets
from .errors import (
    LedgerError,
    LedgerRequestError,
    AccountNotFoundError,
    UnknownServiceError,
    InvalidAmountError,
    LedgerUnavailableError,
    CatalogConfigError,
)

__all__ = [
    "AccountRole",
    "CreditAccount",
    "CostCatalog",
    "QuotaLimits",
    "Clock",
    "SystemClock",
    "FixedClock",
    "ResetDecision",
    "determine_resets",
    "remaining_allowance",
    "apply_resets",
    "LedgerError",
    "LedgerRequestError",
    "AccountNotFoundError",
    "UnknownServiceError",
    "InvalidAmountError",
    "LedgerUnavailableError",
    "CatalogConfigError",
]
