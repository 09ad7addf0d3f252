"""
Persistence Layer for Credit Rail

Supports SQLite (dev) and PostgreSQL (production), plus in-memory stores.
"""

from .database import Database, get_database
from .models import CreditAccountRecord
from .store import (
    BalanceStore,
    UsageStatStore,
    UsageStat,
    InMemoryBalanceStore,
    InMemoryUsageStatStore,
)
from .repository import AccountRepository, UsageStatRepository

__all__ = [
    "Database",
    "get_database",
    "CreditAccountRecord",
    "BalanceStore",
    "UsageStatStore",
    "UsageStat",
    "InMemoryBalanceStore",
    "InMemoryUsageStatStore",
    "AccountRepository",
    "UsageStatRepository",
]
