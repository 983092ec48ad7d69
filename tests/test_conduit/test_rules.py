"""Tests for rule lookup."""

from __future__ import annotations

from sextant.conduit.rules import InMemoryRuleRepository, compile_path_pattern, load_rule_sets


class TestPathPatterns:
    def test_named_segment(self):
        pattern = compile_path_pattern("/products/:slug")
        match = pattern.match("/products/precision-pour-over-kettle")
        assert match is not None
        assert match.group("slug") == "precision-pour-over-kettle"

    def test_segment_does_not_span_slashes(self):
        pattern = compile_path_pattern("/products/:slug")
        assert pattern.match("/products/a/b") is None
        assert pattern.match("/products/") is None

    def test_literal_characters_escaped(self):
        assert compile_path_pattern("/p.html").match("/pxhtml") is None


class TestRuleRepository:
    def test_matches_domain_and_path(self, rule_repository):
        assert rule_repository.get_rule_set("demo.sextant.dev", "/products/kettle") is not None
        assert rule_repository.get_rule_set("demo.sextant.dev", "products/kettle") is not None
        assert rule_repository.get_rule_set("other.dev", "/products/kettle") is None
        assert rule_repository.get_rule_set("demo.sextant.dev", "/about") is None

    def test_first_match_wins(self, rule_set):
        other = rule_set.model_copy(update={"id": "second"})
        repository = InMemoryRuleRepository([rule_set, other])
        assert repository.get_rule_set("demo.sextant.dev", "/products/x").id == rule_set.id
        assert len(repository) == 2

    def test_load_rule_sets_from_directory(self, tmp_path, rule_set):
        (tmp_path / "b.json").write_text(
            rule_set.model_copy(update={"id": "b"}).model_dump_json(), encoding="utf-8"
        )
        (tmp_path / "a.json").write_text(
            rule_set.model_copy(update={"id": "a"}).model_dump_json(), encoding="utf-8"
        )
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
        loaded = load_rule_sets(tmp_path)
        assert [item.id for item in loaded] == ["a", "b"]
        assert loaded[0].field_rules[0].recipe.field_id.value == "title"

    def test_missing_directory(self, tmp_path):
        assert load_rule_sets(tmp_path / "absent") == []
