"""
Credit Gate

"No charge, no run": a costed operation executes only after the ledger has
committed its deduction. The operation runs outside the ledger's write
boundary, so a slow AI call never holds up other writers on the account.
Usage statistics are recorded afterwards and cannot undo the charge.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar
import time
import structlog

from billing.ledger import CreditLedger, DeductionResult, FailureKind
from billing.usage import UsageRecorder
from core.errors import LedgerUnavailableError

logger = structlog.get_logger()

T = TypeVar('T')


class GateDecision(Enum):
    """Gate decision outcomes."""
    ALLOW = "ALLOW"
    DENY = "DENY"
    ERROR = "ERROR"  # Ledger unavailable, failed closed


@dataclass
class GateResult(Generic[T]):
    """
    Result of gating a costed operation.

    Contains the decision, the ledger outcome and the operation result (if allowed).
    """
    decision: GateDecision
    deduction: Optional[DeductionResult]
    result: Optional[T] = None
    error_message: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def allowed(self) -> bool:
        return self.decision == GateDecision.ALLOW

    @property
    def failure(self) -> Optional[FailureKind]:
        return self.deduction.failure if self.deduction else None


@dataclass
class GateConfig:
    """Configuration for the credit gate."""
    fail_closed: bool = True  # Deny if the ledger is unavailable
    record_usage: bool = True


class CreditGate:
    """
    Caller-side composition of ledger and usage recorder.

    Flow:
    1. Check and deduct credits
    2. Execute operation (only if the deduction committed)
    3. Record usage (best-effort)
    """

    def __init__(
        self,
        ledger: CreditLedger,
        usage_recorder: Optional[UsageRecorder] = None,
        config: Optional[GateConfig] = None,
    ):
        self.ledger = ledger
        self.usage_recorder = usage_recorder
        self.config = config or GateConfig()

        # Metrics
        self._total_requests = 0
        self._allowed_count = 0
        self._denied_count = 0
        self._error_count = 0

    def run(
        self,
        user_id: str,
        service_type: str,
        operation: Callable[[], T],
    ) -> GateResult[T]:
        """
        Charge for and run an operation.

        Request errors (unknown service, missing account) propagate. An
        exception from the operation itself also propagates; the charge
        stands because the operation was started.
        """
        start_time = time.perf_counter()
        self._total_requests += 1

        try:
            deduction = self.ledger.check_and_deduct(user_id, service_type)
        except LedgerUnavailableError as e:
            self._error_count += 1
            logger.error("gate_ledger_unavailable", user_id=user_id, service_type=service_type)
            if not self.config.fail_closed:
                raise
            return GateResult(
                decision=GateDecision.ERROR,
                deduction=None,
                error_message=str(e),
                latency_ms=(time.perf_counter() - start_time) * 1000,
            )

        if not deduction.allowed:
            self._denied_count += 1
            return GateResult(
                decision=GateDecision.DENY,
                deduction=deduction,
                error_message=deduction.failure.value,
                latency_ms=(time.perf_counter() - start_time) * 1000,
            )

        self._allowed_count += 1
        result = operation()

        if self.usage_recorder and self.config.record_usage:
            self.usage_recorder.record(user_id, service_type)

        logger.info(
            "gate_allowed",
            user_id=user_id,
            service_type=service_type,
            cost=deduction.cost,
            latency_ms=(time.perf_counter() - start_time) * 1000,
        )

        return GateResult(
            decision=GateDecision.ALLOW,
            deduction=deduction,
            result=result,
            latency_ms=(time.perf_counter() - start_time) * 1000,
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Get gate metrics."""
        return {
            "total_requests": self._total_requests,
            "allowed": self._allowed_count,
            "denied": self._denied_count,
            "errors": self._error_count,
            "allow_rate": self._allowed_count / self._total_requests if self._total_requests > 0 else 0,
        }
