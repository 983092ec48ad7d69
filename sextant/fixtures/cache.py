"""Fixture document cache.

The host constructs one ``FixtureCache`` and passes it to whatever needs
fixture documents. Loaded documents are memoized per cache instance; every
``load`` returns a fresh copy so callers cannot corrupt the cached bytes.
"""

from __future__ import annotations

import threading
from pathlib import Path

from pydantic import BaseModel, Field

from sextant.core.schemas import Product
from sextant.document.toolset import DocumentToolset, HtmlChunkDefinition

DEFAULT_FIXTURE_ROOT = Path(__file__).resolve().parent / "data"


class FixtureDefinition(BaseModel):
    """Static description of a fixture: where it lives and what it should yield."""

    id: str
    domain: str
    path: str
    expected_record: Product
    ocr_transcript: list[str] = Field(default_factory=list)
    html_chunks: list[HtmlChunkDefinition] = Field(default_factory=list)


class FixtureDocument(FixtureDefinition):
    html: str
    markdown: str | None = None

    def create_toolset(self) -> DocumentToolset:
        """A new, isolated toolset over this fixture."""
        return DocumentToolset(
            self.html,
            document_id=self.id,
            chunks=self.html_chunks,
            markdown=self.markdown,
            ocr_transcript=self.ocr_transcript,
        )


class FixtureCache:
    """Loads fixture files from ``root`` once and hands out copies."""

    def __init__(
        self,
        definitions: list[FixtureDefinition] | None = None,
        root: Path = DEFAULT_FIXTURE_ROOT,
    ) -> None:
        if definitions is None:
            from sextant.fixtures.product_simple import PRODUCT_SIMPLE

            definitions = [PRODUCT_SIMPLE]
        self._root = root
        self._definitions = {definition.id: definition for definition in definitions}
        self._loaded: dict[str, FixtureDocument] = {}
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def ids(self) -> list[str]:
        return sorted(self._definitions)

    def load(self, fixture_id: str) -> FixtureDocument:
        definition = self._definitions.get(fixture_id)
        if definition is None:
            raise KeyError(f"Unknown fixture: {fixture_id}")
        with self._lock:
            document = self._loaded.get(fixture_id)
            if document is None:
                html_path = self._root / f"{fixture_id}.html"
                markdown_path = self._root / f"{fixture_id}.md"
                document = FixtureDocument(
                    **definition.model_dump(),
                    html=html_path.read_text(encoding="utf-8"),
                    markdown=(
                        markdown_path.read_text(encoding="utf-8")
                        if markdown_path.exists()
                        else None
                    ),
                )
                self._loaded[fixture_id] = document
        return document.model_copy(deep=True)
