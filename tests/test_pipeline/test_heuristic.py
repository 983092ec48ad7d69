"""Tests for heuristic selector derivation and transcript seeding."""

from __future__ import annotations

from decimal import Decimal

import pytest

from sextant.core.tolerances import FieldId
from sextant.document.dom import parse_html
from sextant.document.toolset import DocumentToolset
from sextant.pipeline.heuristic import (
    PRICE_PROFILE,
    SKU_PROFILE,
    TITLE_PROFILE,
    SelectorDerivationFailed,
    accepts,
    candidate_selectors,
    create_attribute_selectors,
    derive_selector,
    infer_currency_code,
    seed_draft_from_transcript,
    to_search_tokens,
)


@pytest.fixture
def product_soup(product_html):
    return parse_html(product_html)


@pytest.fixture
def toolset(product_html):
    return DocumentToolset(product_html)


class TestSeedDraft:
    def test_fixture_transcript(self, product_document):
        draft = seed_draft_from_transcript(product_document.ocr_transcript)
        assert draft.title == "Precision Pour-Over Kettle"
        assert draft.brand == "Brimstone Labs"
        assert draft.price.amount == Decimal("149.00")
        assert draft.price.currency_code == "USD"
        assert draft.price.raw == "$149.00"

    def test_brand_falls_back_to_second_line(self):
        draft = seed_draft_from_transcript(["Steel Kettle", "Northwind", "€20"])
        assert draft.brand == "Northwind"
        assert draft.price.currency_code == "EUR"

    def test_no_price_line(self):
        draft = seed_draft_from_transcript(["Only a title"])
        assert draft.title == "Only a title"
        assert draft.brand is None
        assert draft.price is None

    def test_empty_transcript(self):
        assert seed_draft_from_transcript(["", "   "]).is_empty()


class TestCandidates:
    def test_attribute_selectors_include_tag_prefixes(self):
        selectors = create_attribute_selectors("Price", ("p",))
        assert selectors[:3] == ['p[data-test*="price"]', '[data-test*="price"]', 'p[data-test="price"]']
        assert len(selectors) == len(set(selectors))

    def test_blank_keyword(self):
        assert create_attribute_selectors("  ") == []

    def test_candidate_order_and_cap(self):
        selectors = candidate_selectors(TITLE_PROFILE)
        assert selectors[0] == "h1"
        assert len(selectors) == TITLE_PROFILE.selector_limit

    def test_search_tokens(self):
        assert to_search_tokens("Precision  Pour-Over Kettle") == ["precision", "pour", "over", "kettle"]

    @pytest.mark.parametrize(
        ("text", "code"),
        [("$149.00", "USD"), ("149.00 GBP", "GBP"), ("£5", "GBP"), ("149", "USD")],
    )
    def test_infer_currency_code(self, text, code):
        assert infer_currency_code(text) == code


class TestDeriveSelector:
    def test_title_uses_heading(self, product_soup, toolset):
        derived = derive_selector(
            product_soup, toolset, TITLE_PROFILE, seeds=["Precision Pour-Over Kettle"]
        )
        assert derived.selector == "h1"
        assert derived.strategy == "attribute-candidate"

    def test_price_accepts_currency_amount(self, product_soup, toolset):
        derived = derive_selector(product_soup, toolset, PRICE_PROFILE, seeds=["$149.00"])
        assert "price" in derived.selector
        assert derived.result.matches[0].text == "$149.00"

    def test_sku_found_by_attribute(self, product_soup, toolset):
        derived = derive_selector(product_soup, toolset, SKU_PROFILE)
        assert derived.result.matches[0].text == "SKU: BR-PPK-08"

    def test_scored_scan_fallback(self):
        html = '<div><span class="x">Northwind</span><b class="brand-name">Northwind Kettles</b></div>'
        soup = parse_html(html)
        derived = derive_selector(
            soup, DocumentToolset(html), TITLE_PROFILE, seeds=["Northwind Kettles"]
        )
        assert derived.strategy == "scored-scan"
        assert derived.result.matches[0].text == "Northwind Kettles"

    def test_failure(self):
        html = "<html><body><h1>Kettle</h1></body></html>"
        with pytest.raises(SelectorDerivationFailed) as excinfo:
            derive_selector(parse_html(html), DocumentToolset(html), PRICE_PROFILE)
        assert excinfo.value.field_id is FieldId.PRICE
        assert "price" in str(excinfo.value)

    def test_seed_tokens_must_all_match(self, toolset):
        matches = toolset.query_html("h1").matches
        assert accepts(TITLE_PROFILE, matches, ["precision", "kettle"])
        assert not accepts(TITLE_PROFILE, matches, ["precision", "teapot"])
        assert not accepts(TITLE_PROFILE, [], [])
