"""Service layer tying orchestration, the recipe store and deterministic replay together."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, Field

from sextant.conduit.engine import OrchestrationResult, run_orchestration
from sextant.conduit.rules import InMemoryRuleRepository, RuleRepository, load_rule_sets
from sextant.config.settings import BudgetConfig, SextantConfig
from sextant.core.recipe import LifecycleState
from sextant.core.schemas import Product
from sextant.document.toolset import DocumentSnapshot, DocumentToolset
from sextant.fixtures.product_simple import build_product_simple_rule_set
from sextant.pipeline.execute import execute_recipe
from sextant.signals.emitter import SignalEmitter
from sextant.store.recipe_store import (
    DocumentTarget,
    LocalFileSystemRecipeStore,
    RecipeNotFound,
    RecipeStoreError,
    StoredRecipe,
)

logger = logging.getLogger(__name__)

GENERATED_NOTE = "Recipe generated via orchestration."
PROMOTED_NOTE = "Promoted via recipe service."


class NoStableRecipe(RecipeStoreError):
    """Raised when parsing is requested but no stable recipe exists."""


class GenerationResult(BaseModel):
    orchestration: OrchestrationResult
    stored: StoredRecipe | None = None


class ParseResult(BaseModel):
    recipe_id: str
    record: Product
    field_values: dict[str, Any] = Field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_rule_repository(config: SextantConfig) -> InMemoryRuleRepository:
    """Rule sets from the configured directory, then the bundled fixture rules."""
    repository = InMemoryRuleRepository()
    if config.rules.rules_dir is not None:
        for rule_set in load_rule_sets(config.rules.rules_dir):
            repository.add(rule_set)
    if config.rules.include_fixture_rules:
        repository.add(build_product_simple_rule_set())
    logger.info("Loaded %d rule sets", len(repository))
    return repository


class RecipeService:
    def __init__(
        self,
        store: LocalFileSystemRecipeStore,
        rule_lookup: RuleRepository,
        *,
        budget: BudgetConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._rules = rule_lookup
        self._budget = budget or BudgetConfig()
        self._now = now

    @classmethod
    def from_config(cls, config: SextantConfig) -> RecipeService:
        store = LocalFileSystemRecipeStore(
            config.store.data_dir,
            lock_timeout_s=config.store.lock_timeout_s,
            stale_lock_s=config.store.stale_lock_s,
        )
        return cls(store, build_rule_repository(config), budget=config.budget)

    @property
    def store(self) -> LocalFileSystemRecipeStore:
        return self._store

    def generate(
        self,
        document: DocumentSnapshot,
        *,
        ocr_transcript: list[str] | None = None,
        markdown: str | None = None,
        actor: str | None = None,
        budget_overrides: Mapping[str, int | None] | None = None,
        signals: SignalEmitter | None = None,
    ) -> GenerationResult:
        """Orchestrate ``document`` and store the recipe as a draft when validation passes."""
        rule_set = self._rules.get_rule_set(document.domain, document.path)
        toolset = DocumentToolset(
            document.html,
            document_id=f"{document.domain}{document.path}",
            chunks=rule_set.html_chunks if rule_set else None,
            markdown=markdown,
            ocr_transcript=ocr_transcript,
        )
        budget = self._budget.override(**dict(budget_overrides or {}))
        orchestration = run_orchestration(
            document, toolset, self._rules, budget, now=self._now, signals=signals
        )
        if orchestration.validation.status != "pass":
            logger.info(
                "Validation failed for %s%s; recipe not stored",
                document.domain,
                document.path,
            )
            return GenerationResult(orchestration=orchestration)

        stored = self._store.create_draft(
            orchestration.synthesis.recipe,
            actor=actor,
            notes=GENERATED_NOTE,
            document_target=DocumentTarget(domain=document.domain, path=document.path),
            when=self._now(),
        )
        return GenerationResult(orchestration=orchestration, stored=stored)

    def promote(
        self, recipe_id: str, *, actor: str | None = None, notes: str | None = None
    ) -> StoredRecipe:
        return self._store.promote(
            recipe_id, actor=actor, notes=notes or PROMOTED_NOTE, when=self._now()
        )

    def _select_stable(self, domain: str | None, path: str | None) -> StoredRecipe:
        stable = self._store.list(state=LifecycleState.STABLE)
        if not stable:
            raise NoStableRecipe("No stable recipe available for execution")
        if domain is not None:
            matching = [
                record
                for record in stable
                if record.document_target is not None
                and record.document_target.domain == domain
                and (path is None or record.document_target.path == path)
            ]
            if matching:
                return matching[-1]
        return stable[-1]

    def parse(
        self,
        html: str,
        *,
        recipe_id: str | None = None,
        domain: str | None = None,
        path: str | None = None,
    ) -> ParseResult:
        """Replay a stored recipe over ``html``.

        Uses ``recipe_id`` when given, else the latest stable recipe,
        preferring one stored for the same document target.
        """
        if recipe_id is not None:
            stored = self._store.get_by_id(recipe_id)
            if stored is None:
                raise RecipeNotFound(recipe_id)
        else:
            stored = self._select_stable(domain, path)

        base_url = None
        if domain:
            base_url = DocumentSnapshot(domain=domain, path=path or "/", html="").base_url
        execution = execute_recipe(html, stored.recipe, base_url=base_url)
        return ParseResult(
            recipe_id=stored.id,
            record=execution.record,
            field_values={
                field_id.value: value for field_id, value in execution.field_values.items()
            },
        )
