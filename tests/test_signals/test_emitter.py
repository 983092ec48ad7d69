"""Tests for the Signal emitter system."""

import logging

import pytest

from sextant.signals.emitter import SignalEmitter
from sextant.signals.types import SignalType


@pytest.fixture
def tmp_ledger(tmp_path):
    return tmp_path / "test_run" / "signals.jsonl"


@pytest.fixture
def emitter(tmp_ledger):
    return SignalEmitter(run_id="test_run_001", ledger_path=tmp_ledger)


class TestSignalEmitter:
    """Test signal emission, persistence, and broadcasting."""

    def test_emit_creates_signal(self, emitter):
        signal = emitter.emit(SignalType.PHASE_TRANSITION, {"from": "INIT", "to": "EXPECTED_DATA"})
        assert signal.sequence == 1
        assert signal.signal_type == SignalType.PHASE_TRANSITION
        assert signal.run_id == "test_run_001"
        assert signal.payload["from"] == "INIT"

    def test_monotonic_sequence(self, emitter):
        s1 = emitter.emit(SignalType.PHASE_TRANSITION)
        s2 = emitter.emit(SignalType.PASS_STARTED)
        s3 = emitter.emit(SignalType.PASS_COMPLETED)
        assert [s1.sequence, s2.sequence, s3.sequence] == [1, 2, 3]

    def test_signals_are_immutable(self, emitter):
        signal = emitter.emit(SignalType.PHASE_TRANSITION, {"key": "value"})
        with pytest.raises(Exception):
            signal.payload = {"modified": True}

    def test_signals_persisted_to_ledger(self, emitter, tmp_ledger):
        emitter.emit(SignalType.PHASE_TRANSITION, {"from": "INIT", "to": "EXPECTED_DATA"})
        emitter.emit(SignalType.ORCHESTRATION_COMPLETE, {"status": "pass"})

        assert tmp_ledger.exists()
        lines = tmp_ledger.read_text().strip().split("\n")
        assert len(lines) == 2

    def test_load_ledger(self, emitter, tmp_ledger):
        emitter.emit(SignalType.PHASE_TRANSITION, {"from": "INIT", "to": "EXPECTED_DATA"})
        emitter.emit(SignalType.ORCHESTRATION_COMPLETE, {"status": "pass"})

        loaded = SignalEmitter.load_ledger(tmp_ledger)
        assert len(loaded) == 2
        assert loaded[0].signal_type == SignalType.PHASE_TRANSITION
        assert loaded[1].signal_type == SignalType.ORCHESTRATION_COMPLETE

    def test_load_missing_ledger(self, tmp_path):
        assert SignalEmitter.load_ledger(tmp_path / "absent.jsonl") == []

    def test_no_ledger_by_default(self):
        emitter = SignalEmitter(run_id="memory_only")
        emitter.emit(SignalType.PASS_STARTED)
        assert len(emitter.signals) == 1

    def test_subscriber_receives_signals(self, emitter):
        received = []
        emitter.subscribe(received.append)
        emitter.emit(SignalType.PHASE_TRANSITION)
        emitter.emit(SignalType.PASS_STARTED)

        assert [signal.sequence for signal in received] == [1, 2]

    def test_unsubscribe(self, emitter):
        received = []

        def on_signal(signal):
            received.append(signal)

        emitter.subscribe(on_signal)
        emitter.emit(SignalType.PHASE_TRANSITION)

        emitter.unsubscribe(on_signal)
        emitter.emit(SignalType.PASS_STARTED)

        assert len(received) == 1

    def test_subscriber_error_does_not_break_emission(self, emitter, caplog):
        received = []

        def bad_subscriber(signal):
            raise RuntimeError("Subscriber failure")

        emitter.subscribe(bad_subscriber)
        emitter.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="sextant.signals.emitter"):
            signal = emitter.emit(SignalType.PHASE_TRANSITION)
        assert signal.sequence == 1
        assert len(received) == 1
        record = next(r for r in caplog.records if r.getMessage() == "sextant_error")
        assert record.error_code == "SIGNAL_SUBSCRIBER_FAILURE"
        assert record.suppressed is True

    def test_signals_property_returns_copy(self, emitter):
        emitter.emit(SignalType.PHASE_TRANSITION)
        signals = emitter.signals
        assert len(signals) == 1
        signals.clear()
        assert len(emitter.signals) == 1  # Original not affected

    def test_emit_phase_transition_convenience(self, emitter):
        signal = emitter.emit_phase_transition("INIT", "EXPECTED_DATA", {"pass_id": "pass-1"})
        assert signal.signal_type == SignalType.PHASE_TRANSITION
        assert signal.payload["from_phase"] == "INIT"
        assert signal.payload["to_phase"] == "EXPECTED_DATA"
        assert signal.payload["pass_id"] == "pass-1"

    def test_emit_orchestration_complete_convenience(self, emitter):
        signal = emitter.emit_orchestration_complete(
            status="pass", confidence=0.97, duration_ms=120.5, tool_invocations=11
        )
        assert signal.signal_type == SignalType.ORCHESTRATION_COMPLETE
        assert signal.payload["confidence"] == 0.97
        assert signal.payload["tool_invocations"] == 11

    def test_emit_orchestration_failed_convenience(self, emitter):
        signal = emitter.emit_orchestration_failed(
            failure_reason="Budget limit max_passes exceeded", phase_at_failure="INIT"
        )
        assert signal.signal_type == SignalType.ORCHESTRATION_FAILED
        assert signal.payload["phase_at_failure"] == "INIT"
