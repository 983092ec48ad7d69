"""Tests for the fixture document cache."""

from __future__ import annotations

import pytest

from sextant.fixtures.cache import FixtureCache
from sextant.fixtures.product_simple import PRODUCT_SIMPLE, PRODUCT_SIMPLE_ID


class TestFixtureCache:
    def test_load_reads_html_and_markdown(self, fixture_cache):
        document = fixture_cache.load(PRODUCT_SIMPLE_ID)
        assert 'data-test="product-title"' in document.html
        assert document.markdown is not None
        assert document.expected_record.sku == "BR-PPK-08"

    def test_load_returns_independent_copies(self, fixture_cache):
        first = fixture_cache.load(PRODUCT_SIMPLE_ID)
        first.ocr_transcript.append("tampered")
        second = fixture_cache.load(PRODUCT_SIMPLE_ID)
        assert "tampered" not in second.ocr_transcript

    def test_unknown_fixture(self, fixture_cache):
        with pytest.raises(KeyError):
            fixture_cache.load("missing")

    def test_custom_root(self, tmp_path):
        (tmp_path / f"{PRODUCT_SIMPLE_ID}.html").write_text("<h1>Other</h1>", encoding="utf-8")
        cache = FixtureCache([PRODUCT_SIMPLE], root=tmp_path)
        document = cache.load(PRODUCT_SIMPLE_ID)
        assert document.html == "<h1>Other</h1>"
        assert document.markdown is None
        assert cache.ids() == [PRODUCT_SIMPLE_ID]

    def test_toolsets_are_isolated(self, product_document):
        first = product_document.create_toolset()
        second = product_document.create_toolset()
        first.query_html("h1")
        assert second.usage_log() == []
