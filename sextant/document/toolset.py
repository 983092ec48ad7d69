"""Document-scoped evidence toolset.

One ``DocumentToolset`` is built per orchestration invocation. It owns its
parsed DOM and its usage log, so concurrent invocations never share mutable
state. Every public call is recorded; the budget guard counts the entries.
"""

from __future__ import annotations

import copy
import re
import time
from typing import Any

from bs4 import Tag
from pydantic import BaseModel, Field

from sextant.document.dom import (
    attribute_map,
    attribute_value,
    build_css_path,
    collapse_whitespace,
    element_text,
    parse_html,
)

_HEADING_RE = re.compile(r"^#{1,6}\s+(.*)$")


class ToolUsageEntry(BaseModel):
    id: str
    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    timestamp: float


class HtmlChunkDefinition(BaseModel):
    id: str
    selector: str
    label: str | None = None
    description: str | None = None


class HtmlChunkSummary(HtmlChunkDefinition):
    snippet: str
    node_count: int


class HtmlQueryMatch(BaseModel):
    html: str
    text: str
    attributes: dict[str, str] = Field(default_factory=dict)
    attribute_value: str | None = None
    path: str


class HtmlQueryResult(BaseModel):
    document_id: str
    selector: str
    total_matches: int
    matches: list[HtmlQueryMatch] = Field(default_factory=list)
    chunk: HtmlChunkSummary | None = None


class MarkdownSearchMatch(BaseModel):
    heading: str | None
    excerpt: str
    line_range: tuple[int, int]


class MarkdownSearchResult(BaseModel):
    document_id: str
    total_matches: int
    matches: list[MarkdownSearchMatch] = Field(default_factory=list)


class OcrResult(BaseModel):
    document_id: str
    lines: list[str]
    full_text: str
    region: str | None = None


class DocumentSnapshot(BaseModel):
    """An already-fetched document: where it came from and its markup."""

    domain: str = Field(min_length=1)
    path: str = "/"
    html: str

    @property
    def base_url(self) -> str:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"https://{self.domain}{path}"


class _MarkdownSection(BaseModel):
    heading: str | None
    lines: list[str]
    start_line: int


def split_markdown_sections(markdown: str) -> list[_MarkdownSection]:
    """Split markdown into heading-delimited sections with 1-based start lines."""
    sections: list[_MarkdownSection] = []
    heading: str | None = None
    lines: list[str] = []
    start = 1

    def flush() -> None:
        if lines or heading is not None:
            sections.append(_MarkdownSection(heading=heading, lines=list(lines), start_line=start))

    for index, line in enumerate(markdown.splitlines()):
        match = _HEADING_RE.match(line.strip())
        if match:
            flush()
            heading = match.group(1).strip()
            start = index + 1
            lines = []
            continue
        if not lines and heading is None and not line.strip():
            start = index + 2
            continue
        lines.append(line)
    flush()
    return sections


class DocumentToolset:
    """Selector queries, markdown search and transcript reads over one document."""

    def __init__(
        self,
        html: str,
        *,
        document_id: str = "document",
        chunks: list[HtmlChunkDefinition] | None = None,
        markdown: str | None = None,
        ocr_transcript: list[str] | None = None,
        clock=time.time,
    ) -> None:
        self._document_id = document_id
        self._soup = parse_html(html)
        self._chunks = {chunk.id: chunk for chunk in chunks or []}
        self._sections = split_markdown_sections(markdown) if markdown else []
        self._transcript = list(ocr_transcript or [])
        self._clock = clock
        self._usage: list[ToolUsageEntry] = []
        self._counter = 0

    @property
    def document_id(self) -> str:
        return self._document_id

    # --- Usage log ---

    def _record(self, tool: str, payload: dict[str, Any]) -> None:
        self._counter += 1
        self._usage.append(
            ToolUsageEntry(
                id=f"{tool}#{self._counter}",
                tool=tool,
                input=copy.deepcopy(payload),
                timestamp=self._clock(),
            )
        )

    def usage_log(self) -> list[ToolUsageEntry]:
        return [entry.model_copy() for entry in self._usage]

    def reset_usage(self) -> None:
        self._usage.clear()
        self._counter = 0

    # --- Vision ---

    def read_ocr(self, region: str | None = None) -> OcrResult:
        self._record("vision.ocr", {"region": region} if region else {})
        return OcrResult(
            document_id=self._document_id,
            lines=list(self._transcript),
            full_text="\n".join(self._transcript),
            region=region,
        )

    # --- HTML ---

    def _summarize_chunk(self, chunk: HtmlChunkDefinition) -> tuple[Tag | None, HtmlChunkSummary]:
        nodes = self._soup.select(chunk.selector)
        first = nodes[0] if nodes else None
        snippet = element_text(first)[:240] if first is not None else ""
        summary = HtmlChunkSummary(**chunk.model_dump(), snippet=snippet, node_count=len(nodes))
        return first, summary

    def list_chunks(self) -> list[HtmlChunkSummary]:
        self._record("html.list_chunks", {})
        return [self._summarize_chunk(chunk)[1] for chunk in self._chunks.values()]

    def query_html(
        self,
        selector: str,
        *,
        attribute: str | None = None,
        chunk_id: str | None = None,
        limit: int = 5,
    ) -> HtmlQueryResult:
        """Run ``selector`` against the document or one of its chunks.

        Selector syntax errors propagate as ``soupsieve.SelectorSyntaxError``.
        An unknown or empty chunk falls back to the whole document.
        """
        if not selector or not selector.strip():
            raise ValueError("Selector is required for html queries")
        payload: dict[str, Any] = {"selector": selector, "limit": limit}
        if attribute:
            payload["attribute"] = attribute
        if chunk_id:
            payload["chunk_id"] = chunk_id
        self._record("html.query", payload)

        root: Tag = self._soup
        summary = None
        chunk = self._chunks.get(chunk_id) if chunk_id else None
        if chunk is not None:
            first, chunk_summary = self._summarize_chunk(chunk)
            if first is not None:
                root, summary = first, chunk_summary

        elements = root.select(selector)
        matches = [
            HtmlQueryMatch(
                html=str(element).strip(),
                text=element_text(element),
                attributes=attribute_map(element),
                attribute_value=attribute_value(element, attribute) if attribute else None,
                path=build_css_path(element),
            )
            for element in elements[: max(limit, 0)]
        ]
        return HtmlQueryResult(
            document_id=self._document_id,
            selector=selector,
            total_matches=len(elements),
            matches=matches,
            chunk=summary,
        )

    # --- Markdown ---

    def search_markdown(
        self, query: str, *, case_sensitive: bool = False, max_snippets: int = 3
    ) -> MarkdownSearchResult:
        if not query or not query.strip():
            raise ValueError("Query must not be empty")
        self._record(
            "markdown.search",
            {"query": query, "case_sensitive": case_sensitive, "max_snippets": max_snippets},
        )
        needle = query if case_sensitive else query.lower()
        matches: list[MarkdownSearchMatch] = []
        for section in self._sections:
            joined = "\n".join(section.lines)
            haystack = joined if case_sensitive else joined.lower()
            if needle not in haystack:
                continue
            end = section.start_line + max(len(section.lines) - 1, 0)
            matches.append(
                MarkdownSearchMatch(
                    heading=section.heading,
                    excerpt=collapse_whitespace(joined)[:280],
                    line_range=(section.start_line, end),
                )
            )
        return MarkdownSearchResult(
            document_id=self._document_id,
            total_matches=len(matches),
            matches=matches[: max(max_snippets, 0)],
        )
