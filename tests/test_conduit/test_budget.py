"""Tests for the per-invocation budget guard."""

from __future__ import annotations

import pytest

from sextant.conduit.budget import BudgetExceeded, BudgetGuard
from sextant.config.settings import BudgetConfig


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


def _config(**overrides) -> BudgetConfig:
    return BudgetConfig(max_passes=3, max_tool_invocations=10, max_duration_ms=1000).override(**overrides)


class TestBudgetGuard:
    def test_within_limits(self):
        clock = FakeClock()
        guard = BudgetGuard(_config(), clock=clock)
        for index in range(3):
            guard.before_pass(f"pass-{index}")
            clock.advance_ms(100)
            guard.after_pass(f"pass-{index}", 3)
        snapshot = guard.snapshot()
        assert snapshot.passes_started == 3
        assert snapshot.tool_invocations == 9
        assert snapshot.elapsed_ms == pytest.approx(300.0)

    def test_require_passes(self):
        guard = BudgetGuard(_config(max_passes=2))
        with pytest.raises(BudgetExceeded) as excinfo:
            guard.require_passes(3)
        assert excinfo.value.limit == "max_passes"
        assert excinfo.value.pass_id is None

    def test_fourth_pass_rejected(self):
        guard = BudgetGuard(_config(), clock=FakeClock())
        for index in range(3):
            guard.before_pass(f"pass-{index}")
        with pytest.raises(BudgetExceeded, match="max_passes"):
            guard.before_pass("pass-4")

    def test_tool_limit_checked_after_pass(self):
        guard = BudgetGuard(_config(), clock=FakeClock())
        guard.before_pass("pass-1")
        guard.after_pass("pass-1", 10)
        with pytest.raises(BudgetExceeded) as excinfo:
            guard.after_pass("pass-1", 1)
        assert excinfo.value.limit == "max_tool_invocations"
        assert excinfo.value.observed == 11
        assert excinfo.value.maximum == 10
        assert str(excinfo.value) == (
            "Budget limit max_tool_invocations exceeded in pass-1: observed 11, maximum 10"
        )

    def test_duration_checked_before_pass(self):
        clock = FakeClock()
        guard = BudgetGuard(_config(), clock=clock)
        guard.before_pass("pass-1")
        clock.advance_ms(1500)
        with pytest.raises(BudgetExceeded) as excinfo:
            guard.before_pass("pass-2")
        assert excinfo.value.limit == "max_duration_ms"
        assert excinfo.value.pass_id == "pass-2"

    def test_duration_exactly_at_limit_is_allowed(self):
        clock = FakeClock()
        guard = BudgetGuard(_config(), clock=clock)
        clock.advance_ms(1000)
        guard.before_pass("pass-1")

    def test_guards_do_not_share_state(self):
        config = _config()
        first = BudgetGuard(config, clock=FakeClock())
        second = BudgetGuard(config, clock=FakeClock())
        first.before_pass("pass-1")
        first.after_pass("pass-1", 5)
        assert second.snapshot().tool_invocations == 0
        assert second.snapshot().passes_started == 0
