"""Tests for the document validator."""

from __future__ import annotations

import pytest

from sextant.core.recipe import create_field_recipe
from sextant.core.tolerances import FieldId
from sextant.pipeline import validation
from sextant.pipeline.synthesis import build_recipe_from_rule_set
from sextant.pipeline.validation import check_field_validators, validate_recipe_against_document

PRICE_ELEMENT = '<p class="product__price" data-test="product-price">$149.00</p>'


@pytest.fixture
def recipe(rule_set):
    return build_recipe_from_rule_set(rule_set).recipe


@pytest.fixture
def expected(product_document):
    return product_document.expected_record


def _result_for(result, field_id: FieldId):
    return next(item for item in result.field_results if item.field_id is field_id)


class TestValidatePassing:
    def test_fixture_passes(self, product_html, recipe, expected):
        result = validate_recipe_against_document(product_html, recipe, expected)
        assert result.passed
        assert result.confidence > 0.9
        assert result.stop_reason is None
        assert result.errors == []
        assert len(result.field_results) == len(recipe.target.fields)

    def test_actual_values_are_plain_data(self, product_html, recipe, expected):
        result = validate_recipe_against_document(product_html, recipe, expected)
        price = _result_for(result, FieldId.PRICE)
        assert price.actual["raw"] == "$149.00"
        assert price.expected["currency_code"] == "USD"

    def test_alias(self):
        assert validation.validate is validate_recipe_against_document


class TestValidateFailing:
    def test_missing_required_field_short_circuits(self, product_html, recipe, expected, monkeypatch):
        def _unexpected(_data):
            raise AssertionError("schema check must not run")

        monkeypatch.setattr(validation, "build_product", _unexpected)
        html = product_html.replace(PRICE_ELEMENT, "")
        result = validate_recipe_against_document(html, recipe, expected)
        assert not result.passed
        assert result.confidence == 0.0
        assert result.stop_reason == "Missing required fields: price"
        price = _result_for(result, FieldId.PRICE)
        assert price.confidence == 0.0
        assert "No value extracted for field price" in price.errors
        assert _result_for(result, FieldId.TITLE).confidence == 0.5

    def test_transform_failure_is_reported_as_data(self, product_html, recipe, expected):
        html = product_html.replace("$149.00</p>", "Call for price</p>")
        result = validate_recipe_against_document(html, recipe, expected)
        assert result.stop_reason == "Missing required fields: price"
        errors = _result_for(result, FieldId.PRICE).errors
        assert any("Unable to parse money value" in error for error in errors)

    def test_schema_failure(self, product_html, recipe, expected):
        html = product_html.replace('rating__value">4.6', 'rating__value">7.2')
        result = validate_recipe_against_document(html, recipe, expected)
        assert not result.passed
        assert result.stop_reason == "Schema validation failed"
        assert result.field_results == []
        assert any(error.startswith("aggregate_rating") for error in result.errors)

    def test_critical_field_mismatch(self, product_html, recipe, expected):
        html = product_html.replace("$149.00</p>", "$155.00</p>")
        result = validate_recipe_against_document(html, recipe, expected)
        assert not result.passed
        assert result.stop_reason == "Critical field price failed validation"
        assert result.confidence < 1.0

    def test_non_critical_mismatch_has_no_stop_reason(self, product_html, recipe, expected):
        html = product_html.replace("SKU: BR-PPK-08", "SKU: BR-PPK-09")
        result = validate_recipe_against_document(html, recipe, expected)
        assert not result.passed
        assert result.stop_reason is None
        assert _result_for(result, FieldId.SKU).status == "fail"
        assert _result_for(result, FieldId.TITLE).status == "pass"


class TestFieldValidators:
    def test_required(self):
        field = create_field_recipe(FieldId.BRAND, ".b", sample=None, validators=[{"type": "required"}])
        assert check_field_validators(field, None) == ["Field brand is required"]
        assert check_field_validators(field, "Brimstone Labs") == []

    def test_min_length(self):
        field = create_field_recipe(
            FieldId.DESCRIPTION, "meta", sample=None, validators=[{"type": "min_length", "value": 20}]
        )
        assert check_field_validators(field, "short") == ["Field description is shorter than 20"]
        assert check_field_validators(field, "x" * 20) == []

    def test_regex_with_flags(self):
        field = create_field_recipe(
            FieldId.SKU,
            ".sku",
            sample=None,
            validators=[{"type": "regex", "pattern": "^br-ppk-\\d+$", "flags": "ig"}],
        )
        assert check_field_validators(field, "BR-PPK-08") == []
        assert check_field_validators(field, "XX-1") == ["Field sku does not match pattern '^br-ppk-\\\\d+$'"]

    def test_regex_applies_to_every_list_item(self):
        field = create_field_recipe(
            FieldId.IMAGES, "img", sample=None, validators=[{"type": "regex", "pattern": "^https://"}]
        )
        assert check_field_validators(field, ["https://a.dev/x.jpg"]) == []
        assert check_field_validators(field, ["https://a.dev/x.jpg", "http://b.dev/y.jpg"])

    def test_invalid_pattern(self):
        field = create_field_recipe(
            FieldId.SKU, ".sku", sample=None, validators=[{"type": "regex", "pattern": "("}]
        )
        assert check_field_validators(field, "x")[0].startswith("Invalid pattern for field sku")
