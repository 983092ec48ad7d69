"""Tests for the Conduit engine — the three-pass orchestration and its failure modes."""

from __future__ import annotations

import itertools

import pytest

from sextant.conduit.budget import BudgetExceeded
from sextant.conduit.engine import RULE_SET_SYNTHESIS_NOTE, Conduit, run_orchestration
from sextant.conduit.phases import Phase
from sextant.core.tolerances import FieldId
from sextant.document.toolset import DocumentSnapshot, DocumentToolset
from sextant.pipeline.heuristic import SelectorDerivationFailed
from sextant.signals.emitter import SignalEmitter
from sextant.signals.types import SignalType

GENEROUS = {"max_duration_ms": 60_000}
PASS_IDS = ["pass-1-expected-data", "pass-2-recipe-synthesis", "pass-3-validation"]


def _stepping_clock(step_s: float = 1.0):
    counter = itertools.count()
    return lambda: next(counter) * step_s


@pytest.fixture
def toolset(product_document):
    return product_document.create_toolset()


class TestRuleSetMode:
    def test_fixture_passes(self, product_snapshot, toolset, rule_repository):
        result = run_orchestration(product_snapshot, toolset, rule_repository, GENEROUS)
        assert result.validation.status == "pass"
        assert result.validation.confidence > 0.9
        assert result.synthesis.origin == "rule-set"
        assert result.expected.origin == "rule-set"
        assert [summary.id for summary in result.passes] == PASS_IDS
        assert all(summary.status == "success" for summary in result.passes)

    def test_pass_notes_and_usage(self, product_snapshot, toolset, rule_repository):
        result = run_orchestration(product_snapshot, toolset, rule_repository, GENEROUS)
        expected_pass, synthesis_pass, validation_pass = result.passes
        assert synthesis_pass.notes == [RULE_SET_SYNTHESIS_NOTE]
        assert validation_pass.notes[0].startswith("Document confidence")
        assert len(expected_pass.tool_usage) == 5
        assert synthesis_pass.tool_usage == []
        assert result.budget.tool_invocations == sum(len(p.tool_usage) for p in result.passes)
        assert result.budget.passes_started == 3

    def test_failing_validation_is_returned(self, product_html, rule_repository):
        html = product_html.replace("$149.00</p>", "$155.00</p>")
        document = DocumentSnapshot(
            domain="demo.sextant.dev", path="/products/precision-pour-over-kettle", html=html
        )
        conduit = Conduit(document, DocumentToolset(html), rule_repository, GENEROUS)
        result = conduit.run()
        assert conduit.phase is Phase.COMPLETE
        assert result.validation.status == "fail"
        assert result.passes[2].status == "failure"
        assert result.passes[2].notes == ["Critical field price failed validation"]

    def test_missing_required_field_stops_validation(self, product_html, rule_repository):
        html = product_html.replace('data-test="product-price">$149.00</p>', "></p>")
        document = DocumentSnapshot(
            domain="demo.sextant.dev", path="/products/precision-pour-over-kettle", html=html
        )
        result = run_orchestration(document, DocumentToolset(html), rule_repository, GENEROUS)
        assert result.validation.stop_reason == "Missing required fields: price"


class TestHeuristicMode:
    def test_fixture_passes(self, product_snapshot, toolset, empty_rule_repository):
        result = run_orchestration(product_snapshot, toolset, empty_rule_repository, GENEROUS)
        assert result.validation.status == "pass"
        assert result.validation.confidence > 0.9
        assert result.synthesis.origin == "heuristic"
        assert result.expected.origin == "heuristic"
        assert [summary.id for summary in result.passes] == PASS_IDS

    def test_expected_record_overlays_transcript_seed(self, product_snapshot, toolset, empty_rule_repository):
        result = run_orchestration(product_snapshot, toolset, empty_rule_repository, GENEROUS)
        record = result.expected_record
        assert record.title == "Precision Pour-Over Kettle"
        assert record.brand == "Brimstone Labs"
        assert record.price.raw == "$149.00"
        assert record.canonical_url == result.synthesis.recipe.target.record.canonical_url

    def test_synthesis_notes(self, product_snapshot, toolset, empty_rule_repository):
        result = run_orchestration(product_snapshot, toolset, empty_rule_repository, GENEROUS)
        assert result.passes[1].notes[0] == "Derived selectors heuristically across 3 iterations"
        assert len(result.passes[0].tool_usage) == 6
        assert result.budget.tool_invocations <= result.budget.max_tool_invocations

    def test_derivation_failure_raises(self, empty_rule_repository):
        html = "<html><body><h1>Kettle</h1></body></html>"
        document = DocumentSnapshot(domain="shop.dev", path="/kettle", html=html)
        signals = SignalEmitter(run_id="run-derive")
        conduit = Conduit(
            document,
            DocumentToolset(html, ocr_transcript=["Kettle"]),
            empty_rule_repository,
            GENEROUS,
            signals=signals,
        )
        with pytest.raises(SelectorDerivationFailed):
            conduit.run()
        assert conduit.phase is Phase.FAIL
        failed = signals.signals[-1]
        assert failed.signal_type is SignalType.ORCHESTRATION_FAILED
        assert failed.payload["phase_at_failure"] == "SYNTHESIS"


class TestBudget:
    def test_pass_limit_below_three_fails_before_any_pass(self, product_snapshot, toolset, rule_repository):
        signals = SignalEmitter(run_id="run-budget")
        conduit = Conduit(
            product_snapshot, toolset, rule_repository, {"max_passes": 2}, signals=signals
        )
        with pytest.raises(BudgetExceeded) as excinfo:
            conduit.run()
        assert excinfo.value.limit == "max_passes"
        assert toolset.usage_log() == []
        assert [signal.signal_type for signal in signals.signals] == [
            SignalType.BUDGET_EXCEEDED,
            SignalType.PHASE_TRANSITION,
            SignalType.ORCHESTRATION_FAILED,
        ]
        assert conduit.phase is Phase.FAIL

    def test_tool_limit(self, product_snapshot, toolset, rule_repository):
        with pytest.raises(BudgetExceeded) as excinfo:
            run_orchestration(
                product_snapshot,
                toolset,
                rule_repository,
                {"max_tool_invocations": 3, "max_duration_ms": 60_000},
            )
        assert excinfo.value.limit == "max_tool_invocations"
        assert excinfo.value.pass_id == "pass-1-expected-data"

    def test_duration_limit(self, product_snapshot, toolset, rule_repository):
        with pytest.raises(BudgetExceeded) as excinfo:
            run_orchestration(
                product_snapshot,
                toolset,
                rule_repository,
                {"max_duration_ms": 1500},
                clock=_stepping_clock(),
            )
        assert excinfo.value.limit == "max_duration_ms"


class TestSignals:
    def test_signal_sequence(self, product_snapshot, toolset, rule_repository):
        signals = SignalEmitter(run_id="run-signals")
        result = run_orchestration(
            product_snapshot, toolset, rule_repository, GENEROUS, signals=signals
        )
        assert result.run_id == "run-signals"
        types = [signal.signal_type for signal in signals.signals]
        assert types == [
            *[SignalType.PHASE_TRANSITION, SignalType.PASS_STARTED, SignalType.PASS_COMPLETED] * 3,
            SignalType.PHASE_TRANSITION,
            SignalType.ORCHESTRATION_COMPLETE,
        ]
        transitions = [
            signal.payload["to_phase"]
            for signal in signals.signals
            if signal.signal_type is SignalType.PHASE_TRANSITION
        ]
        assert transitions == ["EXPECTED_DATA", "SYNTHESIS", "VALIDATION", "COMPLETE"]
        assert signals.signals[-1].payload["status"] == "pass"

    def test_default_run_id(self, product_snapshot, toolset, rule_repository):
        conduit = Conduit(product_snapshot, toolset, rule_repository, GENEROUS)
        assert conduit.run_id.startswith("orch_")
        assert conduit.signals.run_id == conduit.run_id


class TestSparseDocument:
    def test_optional_widget_without_value_still_validates(self, empty_rule_repository):
        html = (
            '<html><head><link rel="canonical" href="https://shop.dev/kettle"></head><body>'
            "<h1>Precision Pour-Over Kettle</h1><p class=\"price\">$149.00</p>"
            '<img src="/media/kettle.jpg"><div class="reviews">12 reviews</div>'
            "</body></html>"
        )
        document = DocumentSnapshot(domain="shop.dev", path="/kettle", html=html)
        toolset = DocumentToolset(html, ocr_transcript=["Precision Pour-Over Kettle"])
        result = run_orchestration(
            document,
            toolset,
            empty_rule_repository,
            {"max_duration_ms": 60_000, "max_tool_invocations": 500},
        )
        assert result.validation.status == "pass", result.validation.errors
        assert result.synthesis.recipe.get_field(FieldId.AGGREGATE_RATING) is None

    def test_missing_optional_fields_cost_extra_queries(self, empty_rule_repository):
        html = (
            '<html><head><link rel="canonical" href="https://shop.dev/kettle"></head><body>'
            "<h1>Precision Pour-Over Kettle</h1><p class=\"price\">$149.00</p>"
            '<img src="/media/kettle.jpg"></body></html>'
        )
        document = DocumentSnapshot(domain="shop.dev", path="/kettle", html=html)
        toolset = DocumentToolset(html, ocr_transcript=["Precision Pour-Over Kettle"])
        with pytest.raises(BudgetExceeded) as excinfo:
            run_orchestration(
                document,
                toolset,
                empty_rule_repository,
                {"max_duration_ms": 60_000, "max_tool_invocations": 48},
            )
        assert excinfo.value.limit == "max_tool_invocations"
        assert excinfo.value.pass_id == "pass-2-recipe-synthesis"
