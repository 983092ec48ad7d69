"""Pass 1 — collect the expected data a candidate recipe is judged against.

With a rule set the expected record is read from configuration and the
evidence instructions are replayed through the toolset. Without one, the
caller's transcript seeds a partial record and a handful of structural
probes record what the document exposes.
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from sextant.conduit.rules import (
    DocumentRuleSet,
    EvidenceInstruction,
    EvidenceSource,
    HtmlEvidenceInstruction,
    MarkdownEvidenceInstruction,
    VisionEvidenceInstruction,
)
from sextant.core.schemas import Product, ProductDraft
from sextant.core.tolerances import FieldId
from sextant.document.dom import collapse_whitespace
from sextant.document.toolset import DocumentToolset
from sextant.pipeline.heuristic import seed_draft_from_transcript

logger = logging.getLogger(__name__)

ExpectedOrigin = Literal["rule-set", "heuristic"]

HEURISTIC_DOCUMENT_ID = "heuristic"
PROBE_CONFIDENCE = 0.5
TRANSCRIPT_CONFIDENCE = 0.4


class ExpectedFieldEvidence(BaseModel):
    field_id: FieldId
    source: EvidenceSource
    snippet: str
    confidence: float = Field(ge=0.0, le=1.0)
    chunk_id: str | None = None


class StructuralProbe(BaseModel):
    """One structural query run while seeding expectations heuristically."""

    field_id: FieldId
    selector: str
    attribute: str | None = None
    total_matches: int = 0
    sample: str | None = None


class ExpectedDataSummary(BaseModel):
    fixture_id: str
    record: Product | None = None
    draft: ProductDraft | None = None
    ocr_transcript: list[str] = Field(default_factory=list)
    supporting_evidence: list[ExpectedFieldEvidence] = Field(default_factory=list)
    probes: list[StructuralProbe] = Field(default_factory=list)
    origin: ExpectedOrigin


def _to_snippet(text: str | None) -> str | None:
    if not text:
        return None
    return collapse_whitespace(text) or None


# --- Rule-set mode ---


def _run_html_instruction(
    toolset: DocumentToolset, instruction: HtmlEvidenceInstruction
) -> str | None:
    result = toolset.query_html(
        instruction.selector,
        chunk_id=instruction.chunk_id,
        limit=instruction.limit or 5,
    )
    if not result.matches:
        return None
    if instruction.mode == "join-text":
        texts = [match.text for match in result.matches if match.text]
        return _to_snippet(instruction.join_with.join(texts))
    return _to_snippet(result.matches[0].text)


def _run_markdown_instruction(
    toolset: DocumentToolset, instruction: MarkdownEvidenceInstruction
) -> str | None:
    result = toolset.search_markdown(
        instruction.query,
        case_sensitive=instruction.case_sensitive,
        max_snippets=instruction.max_snippets or 3,
    )
    return _to_snippet(result.matches[0].excerpt) if result.matches else None


def _run_vision_instruction(
    transcript: list[str], instruction: VisionEvidenceInstruction
) -> str | None:
    if instruction.line_index >= len(transcript):
        return None
    return _to_snippet(transcript[instruction.line_index])


def collect_evidence(
    toolset: DocumentToolset,
    instructions: list[EvidenceInstruction],
    transcript: list[str],
) -> list[ExpectedFieldEvidence]:
    entries: list[ExpectedFieldEvidence] = []
    for instruction in instructions:
        if isinstance(instruction, HtmlEvidenceInstruction):
            snippet = _run_html_instruction(toolset, instruction)
        elif isinstance(instruction, MarkdownEvidenceInstruction):
            snippet = _run_markdown_instruction(toolset, instruction)
        else:
            snippet = _run_vision_instruction(transcript, instruction)
        if not snippet:
            continue
        entries.append(
            ExpectedFieldEvidence(
                field_id=instruction.field_id,
                source=instruction.source,
                snippet=snippet,
                confidence=instruction.confidence,
                chunk_id=instruction.chunk_id,
            )
        )
    return entries


def collect_expected_data(
    rule_set: DocumentRuleSet, toolset: DocumentToolset
) -> ExpectedDataSummary:
    """Expected record and supporting evidence from a pre-authored rule set."""
    requires_ocr = any(
        isinstance(instruction, VisionEvidenceInstruction)
        for instruction in rule_set.evidence_instructions
    )
    lines = toolset.read_ocr().lines if requires_ocr else []
    transcript = lines or list(rule_set.provided_ocr_transcript or [])
    evidence = collect_evidence(toolset, rule_set.evidence_instructions, transcript)
    logger.debug("Collected %d evidence snippets for rule set %s", len(evidence), rule_set.id)
    return ExpectedDataSummary(
        fixture_id=rule_set.id,
        record=rule_set.expected_record.model_copy(deep=True),
        ocr_transcript=transcript,
        supporting_evidence=evidence,
        origin="rule-set",
    )


# --- Heuristic mode ---

_PROBES: tuple[tuple[FieldId, str, str | None], ...] = (
    (FieldId.CANONICAL_URL, 'link[rel="canonical"]', "href"),
    (FieldId.DESCRIPTION, 'meta[name="description"]', "content"),
    (FieldId.IMAGES, "img", "src"),
    (FieldId.TITLE, "h1", None),
)


def _run_probe(
    toolset: DocumentToolset, field_id: FieldId, selector: str, attribute: str | None
) -> StructuralProbe:
    result = toolset.query_html(selector, attribute=attribute, limit=1)
    sample = None
    if result.matches:
        match = result.matches[0]
        sample = _to_snippet(match.attribute_value if attribute else match.text)
    return StructuralProbe(
        field_id=field_id,
        selector=selector,
        attribute=attribute,
        total_matches=result.total_matches,
        sample=sample,
    )


def _seed_evidence(draft: ProductDraft) -> list[ExpectedFieldEvidence]:
    entries: list[ExpectedFieldEvidence] = []
    for field_id, value in (
        (FieldId.TITLE, draft.title),
        (FieldId.BRAND, draft.brand),
        (FieldId.PRICE, draft.price.raw if draft.price is not None else None),
    ):
        snippet = _to_snippet(value)
        if snippet:
            entries.append(
                ExpectedFieldEvidence(
                    field_id=field_id,
                    source="vision",
                    snippet=snippet,
                    confidence=TRANSCRIPT_CONFIDENCE,
                )
            )
    return entries


def collect_heuristic_expectations(toolset: DocumentToolset) -> ExpectedDataSummary:
    """Seed a partial expected record from the transcript plus structural probes.

    The draft only carries what the transcript supports; the record Pass 3
    validates against is assembled after synthesis.
    """
    transcript = toolset.read_ocr().lines
    toolset.list_chunks()
    probes = [_run_probe(toolset, *probe) for probe in _PROBES]
    draft = seed_draft_from_transcript(transcript)

    evidence = _seed_evidence(draft)
    evidence.extend(
        ExpectedFieldEvidence(
            field_id=probe.field_id,
            source="html",
            snippet=probe.sample,
            confidence=PROBE_CONFIDENCE,
        )
        for probe in probes
        if probe.sample
    )
    logger.debug(
        "Seeded heuristic expectations from %d transcript lines and %d probes",
        len(transcript),
        len(probes),
    )
    return ExpectedDataSummary(
        fixture_id=HEURISTIC_DOCUMENT_ID,
        draft=draft,
        ocr_transcript=list(transcript),
        supporting_evidence=evidence,
        probes=probes,
        origin="heuristic",
    )
