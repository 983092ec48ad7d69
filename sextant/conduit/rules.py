"""Rule lookup: pre-authored extraction configuration keyed by domain and path.

A ``DocumentRuleSet`` carries the expected record, the field recipes to use
verbatim, and evidence instructions that Pass 1 replays through the toolset.
When no rule set matches a document, orchestration runs in heuristic mode.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Annotated, Literal, Protocol, Union

from pydantic import BaseModel, Field

from sextant.core.recipe import FieldRecipe
from sextant.core.schemas import Product
from sextant.core.tolerances import FieldId
from sextant.document.toolset import HtmlChunkDefinition

logger = logging.getLogger(__name__)

EvidenceSource = Literal["html", "markdown", "vision"]


class _InstructionBase(BaseModel):
    field_id: FieldId
    source: EvidenceSource
    confidence: float = Field(ge=0.0, le=1.0)
    chunk_id: str | None = None


class HtmlEvidenceInstruction(_InstructionBase):
    kind: Literal["html-query"] = "html-query"
    selector: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1)
    mode: Literal["first-text", "join-text"] = "first-text"
    join_with: str = " "


class MarkdownEvidenceInstruction(_InstructionBase):
    kind: Literal["markdown-search"] = "markdown-search"
    query: str = Field(min_length=1)
    case_sensitive: bool = False
    max_snippets: int | None = Field(default=None, ge=1)


class VisionEvidenceInstruction(_InstructionBase):
    kind: Literal["vision-ocr"] = "vision-ocr"
    line_index: int = Field(default=0, ge=0)


EvidenceInstruction = Annotated[
    Union[HtmlEvidenceInstruction, MarkdownEvidenceInstruction, VisionEvidenceInstruction],
    Field(discriminator="kind"),
]


class FieldRuleDefinition(BaseModel):
    recipe: FieldRecipe
    source: EvidenceSource
    chunk_id: str | None = None
    notes: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class RuleMetadata(BaseModel):
    name: str
    description: str
    created_by: str
    updated_by: str


class DocumentRuleSet(BaseModel):
    id: str
    domain: str
    path_pattern: str
    document_type: Literal["product"] = "product"
    version: str
    expected_record: Product
    metadata: RuleMetadata
    html_chunks: list[HtmlChunkDefinition] = Field(default_factory=list)
    evidence_instructions: list[EvidenceInstruction] = Field(default_factory=list)
    field_rules: list[FieldRuleDefinition] = Field(min_length=1)
    provided_ocr_transcript: list[str] | None = None


class RuleRepository(Protocol):
    def get_rule_set(self, domain: str, path: str) -> DocumentRuleSet | None: ...


def _normalize_path(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"


def compile_path_pattern(pattern: str) -> re.Pattern[str]:
    """Compile ``/products/:slug`` style patterns; ``:name`` matches one segment."""
    parts = re.split(r"(:\w+)", _normalize_path(pattern))
    regex = "".join(
        f"(?P<{part[1:]}>[^/]+)" if part.startswith(":") else re.escape(part) for part in parts
    )
    return re.compile(f"^{regex}$")


class InMemoryRuleRepository:
    """Rule sets held in memory; the first matching rule set wins."""

    def __init__(self, rule_sets: list[DocumentRuleSet] | None = None) -> None:
        self._compiled: list[tuple[DocumentRuleSet, re.Pattern[str]]] = []
        for rule_set in rule_sets or []:
            self.add(rule_set)

    def add(self, rule_set: DocumentRuleSet) -> None:
        self._compiled.append((rule_set, compile_path_pattern(rule_set.path_pattern)))

    def __len__(self) -> int:
        return len(self._compiled)

    def get_rule_set(self, domain: str, path: str) -> DocumentRuleSet | None:
        normalized = _normalize_path(path)
        for rule_set, matcher in self._compiled:
            if rule_set.domain == domain and matcher.match(normalized):
                return rule_set
        return None


def load_rule_sets(directory: Path) -> list[DocumentRuleSet]:
    """Read every ``*.json`` rule set in ``directory`` in filename order."""
    rule_sets: list[DocumentRuleSet] = []
    if not directory.exists():
        return rule_sets
    for path in sorted(directory.glob("*.json")):
        rule_sets.append(DocumentRuleSet.model_validate_json(path.read_text(encoding="utf-8")))
        logger.debug("Loaded rule set from %s", path)
    return rule_sets
