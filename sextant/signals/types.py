"""Signal type definitions for the Sextant audit trail."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted by an orchestration run."""

    PHASE_TRANSITION = "PHASE_TRANSITION"
    PASS_STARTED = "PASS_STARTED"
    PASS_COMPLETED = "PASS_COMPLETED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    ORCHESTRATION_COMPLETE = "ORCHESTRATION_COMPLETE"
    ORCHESTRATION_FAILED = "ORCHESTRATION_FAILED"


class Signal(BaseModel):
    """An immutable signal emitted during an orchestration run.

    Signals are append-only and cannot be modified after emission.
    """

    sequence: int = Field(description="Monotonic sequence number within the run")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
