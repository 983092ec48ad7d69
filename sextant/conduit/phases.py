"""Conduit phase definitions — the orchestration state machine states and transitions."""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """All valid orchestration phases. The three passes always run in order;
    there is no branching topology."""

    INIT = "INIT"
    EXPECTED_DATA = "EXPECTED_DATA"
    SYNTHESIS = "SYNTHESIS"
    VALIDATION = "VALIDATION"
    COMPLETE = "COMPLETE"
    FAIL = "FAIL"


# Valid phase transitions. Each key maps to a set of phases it can transition to.
VALID_TRANSITIONS: dict[Phase, set[Phase]] = {
    Phase.INIT: {Phase.EXPECTED_DATA, Phase.FAIL},
    Phase.EXPECTED_DATA: {Phase.SYNTHESIS, Phase.FAIL},
    Phase.SYNTHESIS: {Phase.VALIDATION, Phase.FAIL},
    Phase.VALIDATION: {Phase.COMPLETE, Phase.FAIL},
    Phase.COMPLETE: set(),  # terminal
    Phase.FAIL: set(),  # terminal
}

TERMINAL_PHASES = {Phase.COMPLETE, Phase.FAIL}

# The fixed pass topology: pass id, label and the phase it runs in.
PASS_SEQUENCE: tuple[tuple[str, str, Phase], ...] = (
    ("pass-1-expected-data", "Collect stored expectations", Phase.EXPECTED_DATA),
    ("pass-2-recipe-synthesis", "Synthesize candidate recipe", Phase.SYNTHESIS),
    ("pass-3-validation", "Validate candidate recipe", Phase.VALIDATION),
)

REQUIRED_PASS_COUNT = len(PASS_SEQUENCE)


class ConduitError(Exception):
    """Raised when the Conduit encounters an unrecoverable error."""
