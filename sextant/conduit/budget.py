"""Budget guard for a single orchestration invocation.

Three independent limits are checked before every pass starts and after it
completes: pass count, cumulative tool invocations and elapsed wall-clock
time. Crossing any of them raises ``BudgetExceeded``; nothing degrades
gracefully past the budget.
"""

from __future__ import annotations

import time
from typing import Callable, Literal

from pydantic import BaseModel

from sextant.config.settings import BudgetConfig
from sextant.conduit.phases import ConduitError

BudgetLimit = Literal["max_passes", "max_tool_invocations", "max_duration_ms"]


class BudgetExceeded(ConduitError):
    """Raised when an orchestration invocation crosses one of its limits."""

    def __init__(
        self, limit: BudgetLimit, pass_id: str | None, observed: float, maximum: float
    ) -> None:
        self.limit = limit
        self.pass_id = pass_id
        self.observed = observed
        self.maximum = maximum
        where = f" in {pass_id}" if pass_id else ""
        super().__init__(f"Budget limit {limit} exceeded{where}: observed {observed}, maximum {maximum}")


class BudgetSnapshot(BaseModel):
    max_passes: int
    max_tool_invocations: int
    max_duration_ms: int
    passes_started: int
    tool_invocations: int
    elapsed_ms: float


class BudgetGuard:
    """Per-invocation counters and clock. Never shared between invocations."""

    def __init__(
        self,
        config: BudgetConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or BudgetConfig()
        self._clock = clock
        self._started = clock()
        self._passes = 0
        self._tool_invocations = 0

    @property
    def config(self) -> BudgetConfig:
        return self._config

    @property
    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000.0

    @property
    def tool_invocations(self) -> int:
        return self._tool_invocations

    def require_passes(self, required: int) -> None:
        """Refuse to start when the configured pass count cannot cover the topology."""
        if self._config.max_passes < required:
            raise BudgetExceeded("max_passes", None, required, self._config.max_passes)

    def _check(self, pass_id: str) -> None:
        if self._passes > self._config.max_passes:
            raise BudgetExceeded("max_passes", pass_id, self._passes, self._config.max_passes)
        if self._tool_invocations > self._config.max_tool_invocations:
            raise BudgetExceeded(
                "max_tool_invocations",
                pass_id,
                self._tool_invocations,
                self._config.max_tool_invocations,
            )
        elapsed = round(self.elapsed_ms, 3)
        if elapsed > self._config.max_duration_ms:
            raise BudgetExceeded("max_duration_ms", pass_id, elapsed, self._config.max_duration_ms)

    def before_pass(self, pass_id: str) -> None:
        self._passes += 1
        self._check(pass_id)

    def after_pass(self, pass_id: str, tool_invocations: int) -> None:
        self._tool_invocations += tool_invocations
        self._check(pass_id)

    def snapshot(self) -> BudgetSnapshot:
        return BudgetSnapshot(
            max_passes=self._config.max_passes,
            max_tool_invocations=self._config.max_tool_invocations,
            max_duration_ms=self._config.max_duration_ms,
            passes_started=self._passes,
            tool_invocations=self._tool_invocations,
            elapsed_ms=round(self.elapsed_ms, 3),
        )
