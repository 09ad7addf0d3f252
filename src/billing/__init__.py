"""
CREDIT RAIL - Billing Module

Credit ledger: prepaid balance plus daily/monthly quotas gating costed
operations.
- Atomic check-and-deduct with optimistic concurrency
- Lazy calendar window resets (UTC)
- Grants and provisioning
- Best-effort per-service usage statistics
"""

from .ledger import (
    CreditLedger,
    LedgerConfig,
    FailureKind,
    AccountSnapshot,
    DeductionResult,
    GrantResult,
    ProvisionResult,
)
from .usage import UsageRecorder

__all__ = [
    "CreditLedger",
    "LedgerConfig",
    "FailureKind",
    "AccountSnapshot",
    "DeductionResult",
    "GrantResult",
    "ProvisionResult",
    "UsageRecorder",
]
