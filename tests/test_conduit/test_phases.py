"""Tests for phase definitions and transition rules."""

from sextant.conduit.phases import (
    PASS_SEQUENCE,
    REQUIRED_PASS_COUNT,
    TERMINAL_PHASES,
    VALID_TRANSITIONS,
    Phase,
)


class TestPhaseTransitions:
    """Verify the state machine transition rules are correct."""

    def test_all_phases_have_transitions(self):
        for phase in Phase:
            assert phase in VALID_TRANSITIONS, f"Phase {phase} missing from VALID_TRANSITIONS"

    def test_terminal_phases_have_no_transitions(self):
        for phase in TERMINAL_PHASES:
            assert VALID_TRANSITIONS[phase] == set(), f"Terminal phase {phase} should have no transitions"

    def test_every_non_terminal_phase_can_fail(self):
        for phase, targets in VALID_TRANSITIONS.items():
            if phase not in TERMINAL_PHASES:
                assert Phase.FAIL in targets, f"{phase} cannot transition to FAIL"

    def test_linear_topology(self):
        assert VALID_TRANSITIONS[Phase.INIT] == {Phase.EXPECTED_DATA, Phase.FAIL}
        assert VALID_TRANSITIONS[Phase.EXPECTED_DATA] == {Phase.SYNTHESIS, Phase.FAIL}
        assert VALID_TRANSITIONS[Phase.SYNTHESIS] == {Phase.VALIDATION, Phase.FAIL}
        assert VALID_TRANSITIONS[Phase.VALIDATION] == {Phase.COMPLETE, Phase.FAIL}

    def test_no_skipping_passes(self):
        assert Phase.SYNTHESIS not in VALID_TRANSITIONS[Phase.INIT]
        assert Phase.VALIDATION not in VALID_TRANSITIONS[Phase.EXPECTED_DATA]
        assert Phase.COMPLETE not in VALID_TRANSITIONS[Phase.SYNTHESIS]


class TestPassSequence:
    def test_three_passes_in_order(self):
        assert REQUIRED_PASS_COUNT == 3
        assert [pass_id for pass_id, _, _ in PASS_SEQUENCE] == [
            "pass-1-expected-data",
            "pass-2-recipe-synthesis",
            "pass-3-validation",
        ]

    def test_each_pass_reachable_from_the_previous(self):
        previous = Phase.INIT
        for _, _, phase in PASS_SEQUENCE:
            assert phase in VALID_TRANSITIONS[previous]
            previous = phase
        assert Phase.COMPLETE in VALID_TRANSITIONS[previous]
