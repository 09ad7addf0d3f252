"""
Tests for the Credit Gate

No charge, no run: the operation executes only after a committed deduction.
"""

import pytest

from billing.ledger import CreditLedger, FailureKind
from billing.usage import UsageRecorder
from core.account import CreditAccount
from core.errors import AccountNotFoundError, LedgerUnavailableError, UnknownServiceError
from enforcement.gate import CreditGate, GateConfig, GateDecision
from persistence.store import InMemoryBalanceStore


class DownStore(InMemoryBalanceStore):
    """Balance store that cannot be reached."""

    def load(self, user_id):
        raise ConnectionError("database unreachable")


class BrokenRecorder(UsageRecorder):
    """Recorder that blows up instead of swallowing."""

    def __init__(self):
        pass

    def record(self, user_id, service_type):
        raise AssertionError("should not be called")


@pytest.fixture
def gate(ledger, usage_recorder):
    return CreditGate(ledger, usage_recorder)


@pytest.fixture
def funded(balance_store, clock):
    balance_store.create_if_absent(CreditAccount.open("user-1", 100, clock.now()))


class TestAllow:

    def test_runs_operation_after_charge(self, gate, funded, balance_store):
        seen = []

        def operation():
            # The charge is already committed when the operation starts
            seen.append(balance_store.load("user-1").balance)
            return "analysis"

        result = gate.run("user-1", "interview_analysis", operation)

        assert result.decision == GateDecision.ALLOW
        assert result.allowed
        assert result.result == "analysis"
        assert result.deduction.cost == 10
        assert seen == [90]

    def test_records_usage(self, gate, funded, usage_recorder):
        gate.run("user-1", "interview_analysis", lambda: None)
        gate.run("user-1", "interview_analysis", lambda: None)

        assert usage_recorder.stats("user-1")["interview_analysis"] == 2

    def test_usage_recording_can_be_disabled(self, ledger, funded):
        gate = CreditGate(ledger, BrokenRecorder(), GateConfig(record_usage=False))

        result = gate.run("user-1", "interview_analysis", lambda: 42)

        assert result.result == 42

    def test_operation_exception_keeps_charge(self, gate, funded, balance_store):
        def operation():
            raise RuntimeError("model timed out")

        with pytest.raises(RuntimeError):
            gate.run("user-1", "interview_analysis", operation)

        assert balance_store.load("user-1").balance == 90


class TestDeny:

    def test_operation_not_run_when_rejected(self, gate, funded, usage_recorder):
        calls = []

        result = gate.run("user-1", "big_job", lambda: calls.append(1))

        assert result.decision == GateDecision.DENY
        assert result.failure == FailureKind.INSUFFICIENT_BALANCE
        assert result.error_message == "INSUFFICIENT_BALANCE"
        assert result.result is None
        assert calls == []
        assert usage_recorder.stats("user-1")["total"] == 0

    def test_request_errors_propagate(self, gate, funded):
        with pytest.raises(UnknownServiceError):
            gate.run("user-1", "teleportation", lambda: None)

        with pytest.raises(AccountNotFoundError):
            gate.run("ghost", "interview_analysis", lambda: None)


class TestLedgerUnavailable:

    def test_fail_closed(self, catalog, clock):
        gate = CreditGate(CreditLedger(DownStore(), catalog, clock))
        calls = []

        result = gate.run("user-1", "interview_analysis", lambda: calls.append(1))

        assert result.decision == GateDecision.ERROR
        assert result.deduction is None
        assert result.error_message == "Credit ledger temporarily unavailable"
        assert calls == []

    def test_fail_open_reraises(self, catalog, clock):
        gate = CreditGate(CreditLedger(DownStore(), catalog, clock), config=GateConfig(fail_closed=False))

        with pytest.raises(LedgerUnavailableError):
            gate.run("user-1", "interview_analysis", lambda: None)


def test_metrics(gate, funded):
    gate.run("user-1", "interview_analysis", lambda: None)
    gate.run("user-1", "big_job", lambda: None)

    metrics = gate.get_metrics()

    assert metrics["total_requests"] == 2
    assert metrics["allowed"] == 1
    assert metrics["denied"] == 1
    assert metrics["errors"] == 0
    assert metrics["allow_rate"] == 0.5
