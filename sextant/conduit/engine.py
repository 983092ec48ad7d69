"""The Conduit — Sextant orchestration engine and lifecycle controller.

The Conduit is a finite state machine over a fixed three-pass topology. It
does not derive selectors or judge values itself; it sequences the passes,
enforces the budget and emits Signals.

Responsibilities:
- Run Pass 1 (expected data), Pass 2 (recipe synthesis) and Pass 3
  (validation) strictly in that order
- Pick rule-set or heuristic mode from the rule lookup
- Check the budget before and after every pass
- Reset and capture tool usage per pass
- Emit Signals at every phase and pass boundary

MUST NOT:
- Retry a pass or degrade past an exhausted budget
- Treat a failing validation as an exception (it is data)
- Swallow errors or fail silently
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

from sextant.conduit.budget import BudgetExceeded, BudgetGuard, BudgetSnapshot
from sextant.conduit.expected import (
    ExpectedDataSummary,
    collect_expected_data,
    collect_heuristic_expectations,
)
from sextant.conduit.phases import (
    PASS_SEQUENCE,
    REQUIRED_PASS_COUNT,
    TERMINAL_PHASES,
    VALID_TRANSITIONS,
    ConduitError,
    Phase,
)
from sextant.conduit.rules import DocumentRuleSet, RuleRepository
from sextant.config.settings import BudgetConfig
from sextant.core.schemas import Product, build_product, merge_records
from sextant.document.toolset import DocumentSnapshot, DocumentToolset, ToolUsageEntry
from sextant.pipeline.synthesis import (
    RecipeSynthesisSummary,
    build_recipe_from_rule_set,
    synthesize_recipe_heuristically,
)
from sextant.pipeline.validation import DocumentValidationResult, validate_recipe_against_document
from sextant.signals.emitter import SignalEmitter
from sextant.signals.types import SignalType
from sextant.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

__all__ = [
    "BudgetExceeded",
    "Conduit",
    "ConduitError",
    "OrchestrationResult",
    "PassSummary",
    "run_orchestration",
]

ResultT = TypeVar("ResultT")

RULE_SET_SYNTHESIS_NOTE = "Sourced field selectors from configurable rules"


class PassSummary(BaseModel, Generic[ResultT]):
    id: str
    label: str
    status: Literal["success", "failure"]
    started_at: datetime
    completed_at: datetime
    notes: list[str] = Field(default_factory=list)
    tool_usage: list[ToolUsageEntry] = Field(default_factory=list)
    result: ResultT


class OrchestrationResult(BaseModel):
    run_id: str
    started_at: datetime
    completed_at: datetime
    budget: BudgetSnapshot
    expected: ExpectedDataSummary
    synthesis: RecipeSynthesisSummary
    validation: DocumentValidationResult
    expected_record: Product
    passes: list[PassSummary[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def heuristic_expected_record(
    synthesis: RecipeSynthesisSummary, expected: ExpectedDataSummary
) -> Product:
    """The synthesized target record overlaid with the transcript seed."""
    target = synthesis.recipe.target.record.model_dump(exclude_none=True)
    seed = expected.draft.model_dump(exclude_none=True) if expected.draft is not None else {}
    return build_product(merge_records(target, seed))


class Conduit:
    """The runtime controller for one orchestration invocation.

    Owns the invocation's budget guard and signal emitter; the toolset is
    supplied by the caller and must not be shared with another invocation.
    """

    def __init__(
        self,
        document: DocumentSnapshot,
        toolset: DocumentToolset,
        rule_lookup: RuleRepository,
        budget: BudgetConfig | Mapping[str, int] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        signals: SignalEmitter | None = None,
    ) -> None:
        if isinstance(budget, Mapping):
            budget = BudgetConfig().override(**budget)
        self._document = document
        self._toolset = toolset
        self._rule_lookup = rule_lookup
        self._now = now
        self._guard = BudgetGuard(budget, clock=clock)
        self._run_id = signals.run_id if signals else f"orch_{uuid.uuid4().hex[:12]}"
        self._signals = signals or SignalEmitter(run_id=self._run_id)
        self._phase = Phase.INIT
        self._current_pass: str | None = None

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    # --- Phase Transition ---

    def _transition(self, to_phase: Phase, context: dict[str, Any] | None = None) -> None:
        """Every phase transition MUST go through this method."""
        if to_phase not in VALID_TRANSITIONS.get(self._phase, set()):
            raise ConduitError(f"Invalid transition: {self._phase.value} -> {to_phase.value}")

        from_phase = self._phase
        self._phase = to_phase
        self._signals.emit_phase_transition(
            from_phase=from_phase.value,
            to_phase=to_phase.value,
            context=context or {},
        )

    # --- Pass Execution ---

    def _execute_pass(
        self,
        index: int,
        runner: Callable[[], ResultT],
        notes_factory: Callable[[ResultT], list[str]] | None = None,
    ) -> PassSummary[ResultT]:
        pass_id, label, phase = PASS_SEQUENCE[index]
        self._transition(phase, {"pass_id": pass_id})
        self._current_pass = pass_id
        self._guard.before_pass(pass_id)
        self._signals.emit(SignalType.PASS_STARTED, {"pass_id": pass_id, "label": label})
        logger.info("Starting %s for %s%s", pass_id, self._document.domain, self._document.path)

        self._toolset.reset_usage()
        started = self._now()
        result = runner()
        completed = self._now()
        usage = self._toolset.usage_log()
        self._guard.after_pass(pass_id, len(usage))

        failed = isinstance(result, DocumentValidationResult) and result.status == "fail"
        summary = PassSummary[Any](
            id=pass_id,
            label=label,
            status="failure" if failed else "success",
            started_at=started,
            completed_at=completed,
            notes=notes_factory(result) if notes_factory else [],
            tool_usage=usage,
            result=result,
        )
        self._signals.emit(
            SignalType.PASS_COMPLETED,
            {"pass_id": pass_id, "status": summary.status, "tool_invocations": len(usage)},
        )
        logger.info("Finished %s with status %s (%d tool calls)", pass_id, summary.status, len(usage))
        return summary

    @staticmethod
    def _validation_notes(result: DocumentValidationResult) -> list[str]:
        if result.stop_reason:
            return [result.stop_reason]
        return [f"Document confidence {result.confidence * 100:.1f}%"]

    @staticmethod
    def _synthesis_notes(result: RecipeSynthesisSummary) -> list[str]:
        if result.origin == "rule-set":
            return [RULE_SET_SYNTHESIS_NOTE]
        return [
            f"Derived selectors heuristically across {len(result.iterations)} iterations",
            *result.notes,
        ]

    # --- Main Run ---

    def run(self) -> OrchestrationResult:
        """Run the three passes, raising on budget exhaustion or derivation failure."""
        started_at = self._now()
        try:
            return self._run(started_at)
        except Exception as exc:
            self._fail(exc)
            raise

    def _run(self, started_at: datetime) -> OrchestrationResult:
        self._guard.require_passes(REQUIRED_PASS_COUNT)
        document = self._document
        rule_set: DocumentRuleSet | None = self._rule_lookup.get_rule_set(
            document.domain, document.path
        )
        mode = "rule-set" if rule_set is not None else "heuristic"
        logger.info("Orchestrating %s%s in %s mode", document.domain, document.path, mode)

        if rule_set is not None:
            expected_pass = self._execute_pass(
                0, lambda: collect_expected_data(rule_set, self._toolset)
            )
            synthesis_pass = self._execute_pass(
                1,
                lambda: build_recipe_from_rule_set(rule_set, now=self._now()),
                self._synthesis_notes,
            )
            expected_record = expected_pass.result.record
        else:
            expected_pass = self._execute_pass(
                0, lambda: collect_heuristic_expectations(self._toolset)
            )
            synthesis_pass = self._execute_pass(
                1,
                lambda: synthesize_recipe_heuristically(
                    document, self._toolset, seed=expected_pass.result.draft, now=self._now()
                ),
                self._synthesis_notes,
            )
            expected_record = heuristic_expected_record(
                synthesis_pass.result, expected_pass.result
            )

        recipe = synthesis_pass.result.recipe
        validation_pass = self._execute_pass(
            2,
            lambda: validate_recipe_against_document(document.html, recipe, expected_record),
            self._validation_notes,
        )

        validation = validation_pass.result
        self._transition(Phase.COMPLETE, {"status": validation.status})
        self._current_pass = None
        budget = self._guard.snapshot()
        self._signals.emit_orchestration_complete(
            status=validation.status,
            confidence=validation.confidence,
            duration_ms=budget.elapsed_ms,
            tool_invocations=budget.tool_invocations,
        )
        return OrchestrationResult(
            run_id=self._run_id,
            started_at=started_at,
            completed_at=self._now(),
            budget=budget,
            expected=expected_pass.result,
            synthesis=synthesis_pass.result,
            validation=validation,
            expected_record=expected_record,
            passes=[expected_pass, synthesis_pass, validation_pass],
        )

    def _fail(self, exc: Exception) -> None:
        phase_at_failure = self._phase
        details: dict[str, Any] = {"pass_id": self._current_pass, "error_type": type(exc).__name__}
        if isinstance(exc, BudgetExceeded):
            self._signals.emit(
                SignalType.BUDGET_EXCEEDED,
                {
                    "limit": exc.limit,
                    "pass_id": exc.pass_id,
                    "observed": exc.observed,
                    "maximum": exc.maximum,
                },
            )
            code = ErrorCode.BUDGET_EXCEEDED
        else:
            code = ErrorCode.ORCHESTRATION_FAILED
        emit_structured_error(
            logger,
            code=code,
            message=str(exc),
            suppressed=False,
            run_id=self._run_id,
            phase=phase_at_failure.value,
            details=details,
        )
        if self._phase not in TERMINAL_PHASES:
            self._transition(Phase.FAIL, {"reason": str(exc)})
        self._signals.emit_orchestration_failed(str(exc), phase_at_failure.value)


def run_orchestration(
    document: DocumentSnapshot,
    toolset: DocumentToolset,
    rule_lookup: RuleRepository,
    budget: BudgetConfig | Mapping[str, int] | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    now: Callable[[], datetime] = _utcnow,
    signals: SignalEmitter | None = None,
) -> OrchestrationResult:
    """Run the three-pass orchestration for ``document``.

    Raises ``BudgetExceeded`` when a limit is crossed (including a pass limit
    below three) and ``SelectorDerivationFailed`` when heuristic synthesis
    cannot locate a required field. A failing validation is returned, not
    raised.
    """
    conduit = Conduit(
        document,
        toolset,
        rule_lookup,
        budget,
        clock=clock,
        now=now,
        signals=signals,
    )
    return conduit.run()
