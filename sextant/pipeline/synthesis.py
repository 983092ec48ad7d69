"""Recipe synthesis — builds a draft recipe from rule configuration or heuristic discovery.

Heuristic synthesis works in three ordered iterations (hero fields, document
metadata and media, supporting context). Each iteration appends one entry to
the audit log with the partial target record and the selectors it touched.
The log carries no timestamps, so the same document and seed transcript
always produce the same log.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from sextant.conduit.rules import DocumentRuleSet, EvidenceSource, FieldRuleDefinition
from sextant.core.recipe import FieldRecipe, Recipe, create_field_recipe
from sextant.core.schemas import Product, ProductDraft, build_product
from sextant.core.tolerances import FieldId
from sextant.core.transforms import TransformError, UrlResolveOptions, resolve_url
from sextant.document.dom import collapse_whitespace, parse_html
from sextant.document.toolset import DocumentSnapshot, DocumentToolset
from sextant.pipeline.extraction import read_breadcrumbs, read_rating, strip_sku_prefix
from sextant.pipeline.heuristic import (
    AGGREGATE_RATING_PROFILE,
    BRAND_PROFILE,
    BREADCRUMBS_PROFILE,
    CANONICAL_URL_PROFILE,
    CURRENCY_MARKER_RE,
    DESCRIPTION_PROFILE,
    IMAGES_PROFILE,
    PRICE_PROFILE,
    SKU_PROFILE,
    TITLE_PROFILE,
    DerivedSelector,
    FieldProfile,
    SelectorDerivationFailed,
    derive_selector,
    infer_currency_code,
    parse_price_text,
    seed_draft_from_transcript,
)
from sextant.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

HEURISTIC_ACTOR = "heuristic-synthesis"
HEURISTIC_VERSION = "0.1.0-heuristic"
DEFAULT_PROVENANCE_CONFIDENCE = 0.6

SynthesisOrigin = Literal["rule-set", "heuristic"]


class SelectorUpdate(BaseModel):
    field_id: FieldId
    selector: str
    notes: str | None = None


class IterationLogEntry(BaseModel):
    """One heuristic iteration: reasoning, partial record and the selectors it set."""

    iteration: int = Field(ge=1)
    thought: str
    updated_target: dict[str, Any] = Field(default_factory=dict)
    updated_selectors: list[SelectorUpdate] = Field(default_factory=list)
    scraped_samples: dict[str, Any] = Field(default_factory=dict)


class RecipeEvidenceRow(BaseModel):
    field_id: FieldId
    source: EvidenceSource
    selectors: list[str]
    chunk_id: str | None = None
    notes: str | None = None


class RecipeSynthesisSummary(BaseModel):
    recipe: Recipe
    evidence_matrix: list[RecipeEvidenceRow] = Field(default_factory=list)
    iterations: list[IterationLogEntry] = Field(default_factory=list)
    origin: SynthesisOrigin
    notes: list[str] = Field(default_factory=list)


def _draft_lifecycle(timestamp: datetime, actor: str | None, notes: str) -> dict[str, Any]:
    return {
        "state": "draft",
        "since": timestamp,
        "history": [{"state": "draft", "at": timestamp, "actor": actor, "notes": notes}],
    }


# --- Rule-set mode ---


def _rule_evidence_row(definition: FieldRuleDefinition) -> RecipeEvidenceRow:
    return RecipeEvidenceRow(
        field_id=definition.recipe.field_id,
        source=definition.source,
        selectors=[step.value for step in definition.recipe.selector_steps],
        chunk_id=definition.chunk_id,
        notes=definition.notes or definition.recipe.primary_step.note,
    )


def build_recipe_from_rule_set(
    rule_set: DocumentRuleSet, *, now: datetime | None = None
) -> RecipeSynthesisSummary:
    """Draft recipe whose field recipes are taken verbatim from ``rule_set``."""
    timestamp = now or datetime.now(timezone.utc)
    metadata = rule_set.metadata
    rows = [_rule_evidence_row(definition) for definition in rule_set.field_rules]

    recipe = Recipe.model_validate(
        {
            "name": metadata.name,
            "version": rule_set.version,
            "description": metadata.description,
            "created_at": timestamp,
            "updated_at": timestamp,
            "created_by": metadata.created_by,
            "updated_by": metadata.updated_by,
            "target": {
                "document_type": rule_set.document_type,
                "record": rule_set.expected_record,
                "fields": [definition.recipe.model_copy(deep=True) for definition in rule_set.field_rules],
            },
            "lifecycle": _draft_lifecycle(
                timestamp, metadata.created_by, "Initial recipe synthesized from rule configuration."
            ),
            "provenance": [
                {
                    "field_id": definition.recipe.field_id,
                    "evidence": " | ".join(row.selectors),
                    "confidence": (
                        definition.confidence
                        if definition.confidence is not None
                        else DEFAULT_PROVENANCE_CONFIDENCE
                    ),
                    "notes": row.notes,
                }
                for definition, row in zip(rule_set.field_rules, rows)
            ],
        }
    )
    return RecipeSynthesisSummary(recipe=recipe, evidence_matrix=rows, origin="rule-set")


# --- Heuristic mode ---


class _EvidenceEntry(BaseModel):
    snippet: str
    confidence: float
    chunk_id: str | None = None


class HeuristicSynthesizer:
    """Runs the three heuristic iterations over one document.

    One instance per synthesis; it accumulates field recipes, evidence and
    the iteration log as it goes.
    """

    def __init__(
        self,
        document: DocumentSnapshot,
        toolset: DocumentToolset,
        seed: ProductDraft,
        now: datetime,
    ) -> None:
        self._document = document
        self._toolset = toolset
        self._seed = seed
        self._now = now
        self._soup = parse_html(document.html)
        self._fields: dict[FieldId, FieldRecipe] = {}
        self._evidence: dict[FieldId, _EvidenceEntry] = {}
        self._partial: dict[str, Any] = {}
        self._iterations: list[IterationLogEntry] = []
        self._notes: list[str] = []

    # --- Bookkeeping ---

    def _derive(self, profile: FieldProfile, seeds: list[str] | None = None) -> DerivedSelector | None:
        try:
            return derive_selector(self._soup, self._toolset, profile, seeds=seeds or [])
        except SelectorDerivationFailed as exc:
            if profile.required:
                emit_structured_error(
                    logger,
                    code=ErrorCode.SELECTOR_DERIVATION_FAILED,
                    message=str(exc),
                    suppressed=False,
                    details={"field_id": profile.field_id.value, "domain": self._document.domain},
                )
                raise
            self._notes.append(
                f"Skipped {profile.field_id.value}: no selector satisfied its acceptance predicate"
            )
            logger.info("Skipping optional field %s: %s", profile.field_id.value, exc)
            return None

    def _skip_empty(self, field_id: FieldId) -> None:
        self._notes.append(f"Skipped {field_id.value}: matched element yielded no value")
        logger.info("Skipping optional field %s: matched element yielded no value", field_id.value)

    def _add_evidence(
        self, field_id: FieldId, snippet: str | None, confidence: float, chunk_id: str | None = None
    ) -> None:
        normalized = collapse_whitespace(snippet or "")
        if normalized:
            self._evidence[field_id] = _EvidenceEntry(
                snippet=normalized[:240], confidence=confidence, chunk_id=chunk_id
            )

    def _record_iteration(
        self,
        iteration: int,
        thought: str,
        fields: list[FieldRecipe],
        target_updates: dict[str, Any],
        scraped: dict[str, Any],
    ) -> None:
        for field in fields:
            self._fields[field.field_id] = field
        self._partial.update({key: value for key, value in target_updates.items() if value is not None})
        self._iterations.append(
            IterationLogEntry(
                iteration=iteration,
                thought=thought,
                updated_target=copy.deepcopy(self._partial),
                updated_selectors=[
                    SelectorUpdate(
                        field_id=field.field_id,
                        selector=field.primary_step.value,
                        notes=field.primary_step.note,
                    )
                    for field in fields
                ],
                scraped_samples={key: value for key, value in scraped.items() if value is not None},
            )
        )

    # --- Iterations ---

    def _hero_iteration(self) -> None:
        seed = self._seed
        title_seed = seed.title or ""
        derived = self._derive(TITLE_PROFILE, [title_seed])
        title = collapse_whitespace(derived.result.matches[0].text) or title_seed
        if not title:
            raise SelectorDerivationFailed(FieldId.TITLE, "matched element has no text")
        fields = [
            create_field_recipe(
                FieldId.TITLE,
                derived.selector,
                sample=title,
                description="Selector synthesized by heuristic derivation for title.",
                note="Matched transcript headline tokens against hero element.",
                transforms=[{"name": "text.collapse"}],
                validators=[{"type": "required"}],
            )
        ]
        self._add_evidence(FieldId.TITLE, derived.result.matches[0].text, 0.85, self._chunk(derived))

        brand = None
        brand_derived = self._derive(BRAND_PROFILE, [seed.brand or ""])
        if brand_derived is not None:
            brand = collapse_whitespace(brand_derived.result.matches[0].text) or seed.brand
            if not brand:
                self._skip_empty(FieldId.BRAND)
            else:
                fields.append(
                    create_field_recipe(
                        FieldId.BRAND,
                        brand_derived.selector,
                        sample=brand,
                        description="Selector synthesized by heuristic derivation for brand.",
                        note="Located brand label adjacent to headline using transcript keywords.",
                        transforms=[{"name": "text.collapse"}],
                    )
                )
                self._add_evidence(
                    FieldId.BRAND, brand_derived.result.matches[0].text, 0.75, self._chunk(brand_derived)
                )

        price_seed = seed.price.raw if seed.price is not None and seed.price.raw else ""
        price_derived = self._derive(PRICE_PROFILE, [price_seed])
        price_text = next(
            (
                collapse_whitespace(match.text)
                for match in price_derived.result.matches
                if CURRENCY_MARKER_RE.search(match.text)
            ),
            collapse_whitespace(price_derived.result.matches[0].text),
        )
        currency_code = infer_currency_code(price_text)
        try:
            price = parse_price_text(price_text)
        except TransformError as exc:
            raise SelectorDerivationFailed(FieldId.PRICE, str(exc)) from exc
        price_sample = price.model_dump(mode="json", exclude_none=True)
        fields.append(
            create_field_recipe(
                FieldId.PRICE,
                price_derived.selector,
                sample=price_sample,
                description="Selector synthesized by heuristic derivation for price.",
                note="Identified price container with currency tokens and numeric amount.",
                transforms=[
                    {"name": "text.collapse"},
                    {"name": "money.parse", "options": {"currency_code": currency_code}},
                ],
                validators=[{"type": "required"}],
            )
        )
        self._add_evidence(FieldId.PRICE, price_text, 0.8, self._chunk(price_derived))

        self._record_iteration(
            1,
            "Used the transcript to locate hero title, brand label and price container by "
            "matching text tokens against attribute hints.",
            fields,
            {"title": title, "brand": brand, "price": price_sample},
            {"title": title, "brand": brand, "price": price.raw},
        )

    def _metadata_iteration(self) -> None:
        base_url = self._document.base_url
        derived = self._derive(CANONICAL_URL_PROFILE)
        href = derived.result.matches[0].attribute_value
        try:
            canonical_url = resolve_url(href or base_url, UrlResolveOptions(enforce_https=True), base_url)
        except TransformError:
            canonical_url = base_url
        fields = [
            create_field_recipe(
                FieldId.CANONICAL_URL,
                derived.selector,
                sample=canonical_url,
                description="Selector synthesized by heuristic derivation for canonical_url.",
                note="Inspected head links for canonical relation and normalized the absolute URL.",
                attribute="href",
                transforms=[{"name": "url.resolve", "options": {"enforce_https": True}}],
                validators=[{"type": "required"}],
            )
        ]
        self._add_evidence(FieldId.CANONICAL_URL, href, 0.7)

        description = None
        description_derived = self._derive(DESCRIPTION_PROFILE)
        if description_derived is not None:
            content = description_derived.result.matches[0].attribute_value or ""
            description = collapse_whitespace(content) or None
            if description is None:
                self._skip_empty(FieldId.DESCRIPTION)
            else:
                fields.append(
                    create_field_recipe(
                        FieldId.DESCRIPTION,
                        description_derived.selector,
                        sample=description,
                        description="Selector synthesized by heuristic derivation for description.",
                        note="Captured long-form copy from meta description content attribute.",
                        attribute="content",
                        transforms=[{"name": "text.collapse"}],
                        validators=[{"type": "min_length", "value": 20}],
                    )
                )
                self._add_evidence(FieldId.DESCRIPTION, content, 0.65)

        images_derived = self._derive(IMAGES_PROFILE)
        images: list[str] = []
        for match in images_derived.result.matches:
            resolved = self._resolve(match.attribute_value, canonical_url)
            if resolved is not None:
                images.append(resolved)
        if not images:
            raise SelectorDerivationFailed(FieldId.IMAGES, "no resolvable image sources")
        fields.append(
            create_field_recipe(
                FieldId.IMAGES,
                images_derived.selector,
                sample=images,
                description="Selector synthesized by heuristic derivation for images.",
                note="Found gallery images by scanning for img nodes tagged as gallery content.",
                attribute="src",
                all_matches=True,
                transforms=[{"name": "url.resolve"}],
                validators=[{"type": "min_length", "value": 1}],
            )
        )
        first_image = images_derived.result.matches[0]
        self._add_evidence(FieldId.IMAGES, first_image.attribute_value, 0.75, self._chunk(images_derived))

        position = first_image.attributes.get("data-position")
        thumbnail_selector = (
            f'{images_derived.selector}[data-position="{position}"]'
            if position
            else images_derived.selector
        )
        thumbnail_query = self._toolset.query_html(thumbnail_selector, attribute="src", limit=1)
        thumbnail_src = thumbnail_query.matches[0].attribute_value if thumbnail_query.matches else None
        thumbnail = self._resolve(thumbnail_src, canonical_url) or images[0]
        fields.append(
            create_field_recipe(
                FieldId.THUMBNAIL,
                thumbnail_selector,
                sample=thumbnail,
                description="Selector synthesized by heuristic derivation for thumbnail.",
                note="Selected first gallery image as thumbnail after verifying selector matches.",
                attribute="src",
                transforms=[{"name": "url.resolve"}],
                validators=[{"type": "required"}],
            )
        )
        self._add_evidence(
            FieldId.THUMBNAIL,
            thumbnail_src,
            0.75,
            thumbnail_query.chunk.id if thumbnail_query.chunk else None,
        )

        updates = {
            "canonical_url": canonical_url,
            "description": description,
            "images": images,
            "thumbnail": thumbnail,
        }
        self._record_iteration(
            2,
            "Inspected document head for canonical metadata and captured gallery selectors "
            "to build media context.",
            fields,
            updates,
            updates,
        )

    def _context_iteration(self) -> None:
        canonical_url = self._partial.get("canonical_url")
        fields: list[FieldRecipe] = []

        rating = None
        rating_derived = self._derive(AGGREGATE_RATING_PROFILE)
        if rating_derived is not None:
            widget = parse_html(rating_derived.result.matches[0].html)
            rating = read_rating(widget, canonical_url)
            if rating is None:
                self._skip_empty(FieldId.AGGREGATE_RATING)
            else:
                fields.append(
                    create_field_recipe(
                        FieldId.AGGREGATE_RATING,
                        rating_derived.selector,
                        sample=rating,
                        description="Selector synthesized by heuristic derivation for aggregate_rating.",
                        note="Analyzed rating widget tagged with review metadata to extract the rating summary.",
                    )
                )
                self._add_evidence(
                    FieldId.AGGREGATE_RATING,
                    rating_derived.result.matches[0].text,
                    0.7,
                    self._chunk(rating_derived),
                )

        breadcrumbs = None
        crumbs_derived = self._derive(BREADCRUMBS_PROFILE)
        if crumbs_derived is not None:
            items = [parse_html(match.html) for match in crumbs_derived.result.matches]
            breadcrumbs = read_breadcrumbs(items, canonical_url) or None
            if breadcrumbs is None:
                self._skip_empty(FieldId.BREADCRUMBS)
            else:
                fields.append(
                    create_field_recipe(
                        FieldId.BREADCRUMBS,
                        crumbs_derived.selector,
                        sample=breadcrumbs,
                        description="Selector synthesized by heuristic derivation for breadcrumbs.",
                        note="Traced breadcrumb navigation items for hierarchical context.",
                        all_matches=True,
                        validators=[{"type": "min_length", "value": 1}],
                    )
                )
                self._add_evidence(
                    FieldId.BREADCRUMBS,
                    crumbs_derived.result.matches[0].text,
                    0.65,
                    self._chunk(crumbs_derived),
                )

        sku = None
        sku_derived = self._derive(SKU_PROFILE)
        if sku_derived is not None:
            sku = strip_sku_prefix(collapse_whitespace(sku_derived.result.matches[0].text)) or None
            if sku is None:
                self._skip_empty(FieldId.SKU)
            else:
                fields.append(
                    create_field_recipe(
                        FieldId.SKU,
                        sku_derived.selector,
                        sample=sku,
                        description="Selector synthesized by heuristic derivation for sku.",
                        note="Located SKU label using attribute hints and text normalization.",
                        transforms=[{"name": "text.collapse"}],
                    )
                )
                self._add_evidence(FieldId.SKU, sku_derived.result.matches[0].text, 0.6, self._chunk(sku_derived))

        updates = {"aggregate_rating": rating, "breadcrumbs": breadcrumbs, "sku": sku}
        self._record_iteration(
            3,
            "Completed supporting context by analyzing rating widget, breadcrumb trail and SKU label.",
            fields,
            updates,
            updates,
        )

    # --- Helpers ---

    @staticmethod
    def _chunk(derived: DerivedSelector) -> str | None:
        return derived.result.chunk.id if derived.result.chunk else None

    @staticmethod
    def _resolve(value: str | None, base_url: str | None) -> str | None:
        if not value:
            return None
        try:
            return resolve_url(value, base_url=base_url)
        except TransformError:
            return None

    # --- Result ---

    def _build_recipe(self, target: Product) -> Recipe:
        timestamp = self._now
        document = self._document
        fields = list(self._fields.values())
        return Recipe.model_validate(
            {
                "name": f"Generated recipe for {document.domain}{document.path}",
                "version": HEURISTIC_VERSION,
                "description": "Selector recipe synthesized by heuristic selector derivation.",
                "created_at": timestamp,
                "updated_at": timestamp,
                "created_by": HEURISTIC_ACTOR,
                "updated_by": HEURISTIC_ACTOR,
                "target": {"document_type": "product", "record": target, "fields": fields},
                "lifecycle": _draft_lifecycle(
                    timestamp,
                    HEURISTIC_ACTOR,
                    "Initial recipe synthesized via heuristic selector derivation.",
                ),
                "provenance": [
                    {
                        "field_id": field.field_id,
                        "evidence": " | ".join(step.value for step in field.selector_steps),
                        "confidence": (
                            self._evidence[field.field_id].confidence
                            if field.field_id in self._evidence
                            else DEFAULT_PROVENANCE_CONFIDENCE
                        ),
                        "notes": field.primary_step.note,
                    }
                    for field in fields
                ],
            }
        )

    def run(self) -> RecipeSynthesisSummary:
        self._hero_iteration()
        self._metadata_iteration()
        self._context_iteration()

        target = build_product(self._partial)
        recipe = self._build_recipe(target)
        evidence_matrix = [
            RecipeEvidenceRow(
                field_id=field.field_id,
                source="html",
                selectors=[step.value for step in field.selector_steps],
                chunk_id=self._evidence[field.field_id].chunk_id if field.field_id in self._evidence else None,
                notes=field.primary_step.note,
            )
            for field in recipe.target.fields
        ]
        logger.info(
            "Synthesized heuristic recipe for %s%s with %d fields",
            self._document.domain,
            self._document.path,
            len(recipe.target.fields),
        )
        return RecipeSynthesisSummary(
            recipe=recipe,
            evidence_matrix=evidence_matrix,
            iterations=list(self._iterations),
            origin="heuristic",
            notes=list(self._notes),
        )


def synthesize_recipe_heuristically(
    document: DocumentSnapshot,
    toolset: DocumentToolset,
    *,
    seed: ProductDraft | None = None,
    now: datetime | None = None,
) -> RecipeSynthesisSummary:
    """Discover selectors for every known field and assemble a draft recipe.

    ``seed`` is the partial record guessed from the caller's transcript; when
    omitted the transcript is read through ``toolset``. Raises
    ``SelectorDerivationFailed`` when a required field cannot be located.
    """
    if seed is None:
        seed = seed_draft_from_transcript(toolset.read_ocr().lines)
    return HeuristicSynthesizer(
        document, toolset, seed, now or datetime.now(timezone.utc)
    ).run()
