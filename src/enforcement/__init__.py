"""
CREDIT RAIL - Enforcement Module

The Credit Gate: "No Charge, No Run"

A costed operation is executed only if (1) the ledger accepted the charge
and (2) the charge was durably committed.
"""

from .gate import CreditGate, GateConfig, GateDecision, GateResult

__all__ = [
    "CreditGate",
    "GateConfig",
    "GateDecision",
    "GateResult",
]
