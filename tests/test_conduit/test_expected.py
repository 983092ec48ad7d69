"""Tests for Pass 1 expected-data collection."""

from __future__ import annotations

from sextant.conduit.expected import collect_expected_data, collect_heuristic_expectations
from sextant.core.tolerances import FieldId
from sextant.document.toolset import DocumentToolset


class TestRuleSetExpectations:
    def test_record_and_evidence(self, rule_set, product_document):
        toolset = product_document.create_toolset()
        summary = collect_expected_data(rule_set, toolset)
        assert summary.origin == "rule-set"
        assert summary.fixture_id == rule_set.id
        assert summary.record == rule_set.expected_record
        assert [entry.field_id for entry in summary.supporting_evidence] == [
            FieldId.TITLE,
            FieldId.PRICE,
            FieldId.BREADCRUMBS,
            FieldId.BRAND,
            FieldId.TITLE,
        ]
        crumbs = summary.supporting_evidence[2]
        assert crumbs.snippet == "Home › Kitchen › Coffee & Tea › Precision Pour-Over Kettle"
        assert summary.supporting_evidence[-1].source == "vision"

    def test_every_tool_call_logged(self, rule_set, product_document):
        toolset = product_document.create_toolset()
        collect_expected_data(rule_set, toolset)
        tools = [entry.tool for entry in toolset.usage_log()]
        assert tools == ["vision.ocr", "html.query", "html.query", "html.query", "markdown.search"]

    def test_provided_transcript_used_when_ocr_is_empty(self, rule_set, product_html):
        summary = collect_expected_data(rule_set, DocumentToolset(product_html))
        assert summary.ocr_transcript == rule_set.provided_ocr_transcript
        assert summary.supporting_evidence[-1].snippet == "Precision Pour-Over Kettle"

    def test_expected_record_is_a_copy(self, rule_set, product_document):
        summary = collect_expected_data(rule_set, product_document.create_toolset())
        assert summary.record is not rule_set.expected_record


class TestHeuristicExpectations:
    def test_seed_and_probes(self, product_document):
        toolset = product_document.create_toolset()
        summary = collect_heuristic_expectations(toolset)
        assert summary.origin == "heuristic"
        assert summary.fixture_id == "heuristic"
        assert summary.record is None
        assert summary.draft.title == "Precision Pour-Over Kettle"
        assert summary.draft.brand == "Brimstone Labs"
        assert [probe.field_id for probe in summary.probes] == [
            FieldId.CANONICAL_URL,
            FieldId.DESCRIPTION,
            FieldId.IMAGES,
            FieldId.TITLE,
        ]
        images = summary.probes[2]
        assert images.total_matches == 2
        assert images.sample.endswith("precision-pour-over-kettle.jpg")

    def test_evidence_sources(self, product_document):
        summary = collect_heuristic_expectations(product_document.create_toolset())
        vision = [entry for entry in summary.supporting_evidence if entry.source == "vision"]
        html = [entry for entry in summary.supporting_evidence if entry.source == "html"]
        assert [entry.field_id for entry in vision] == [FieldId.TITLE, FieldId.BRAND, FieldId.PRICE]
        assert all(entry.confidence == 0.4 for entry in vision)
        assert len(html) == 4
        assert all(entry.confidence == 0.5 for entry in html)

    def test_tool_usage(self, product_document):
        toolset = product_document.create_toolset()
        collect_heuristic_expectations(toolset)
        assert len(toolset.usage_log()) == 6

    def test_empty_transcript(self, product_html):
        summary = collect_heuristic_expectations(DocumentToolset(product_html))
        assert summary.draft.is_empty()
        assert all(entry.source == "html" for entry in summary.supporting_evidence)
