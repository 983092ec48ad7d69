"""Document validator — replays a candidate recipe and scores it against an expected record.

Failures are data: a missing required field, a schema violation or a
tolerance mismatch all come back as a failing ``DocumentValidationResult``.
Only selector strategies the extractor cannot run raise.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, Field
from soupsieve import SelectorSyntaxError

from sextant.core.comparator import clamp_confidence, compare_field
from sextant.core.recipe import FieldRecipe, MinLengthValidator, RegexValidator, Recipe
from sextant.core.schemas import Product, RecordValidationError, build_product
from sextant.core.tolerances import CRITICAL_FIELDS, FieldId
from sextant.core.transforms import TransformError
from sextant.document.dom import parse_html
from sextant.pipeline.extraction import (
    assemble_record,
    extract_field_value,
    is_empty_value,
    missing_required_fields,
    reconstruct_money_raw,
)
from sextant.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


class FieldValidationResult(BaseModel):
    field_id: FieldId
    status: Literal["pass", "fail"]
    confidence: float = Field(ge=0.0, le=1.0)
    expected: Any = None
    actual: Any = None
    notes: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class DocumentValidationResult(BaseModel):
    status: Literal["pass", "fail"]
    confidence: float = Field(ge=0.0, le=1.0)
    field_results: list[FieldValidationResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    stop_reason: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == "pass"


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _compile_regex(validator: RegexValidator) -> re.Pattern[str]:
    flags = 0
    for flag in validator.flags or "":
        flags |= _REGEX_FLAGS.get(flag, 0)
    return re.compile(validator.pattern, flags)


def check_field_validators(field: FieldRecipe, value: Any) -> list[str]:
    """Errors for every recipe validator ``value`` fails."""
    name = field.field_id.value
    errors: list[str] = []
    for validator in field.validators:
        if validator.type == "required":
            if is_empty_value(value):
                errors.append(f"Field {name} is required")
        elif isinstance(validator, MinLengthValidator):
            length = len(value) if isinstance(value, (str, list)) else 0
            if length < validator.value:
                errors.append(f"Field {name} is shorter than {validator.value}")
        elif isinstance(validator, RegexValidator):
            errors.extend(_check_regex(name, validator, value))
    return errors


def _check_regex(name: str, validator: RegexValidator, value: Any) -> list[str]:
    try:
        pattern = _compile_regex(validator)
    except re.error as exc:
        return [f"Invalid pattern for field {name}: {exc}"]
    texts = value if isinstance(value, list) else [value]
    if not all(isinstance(text, str) for text in texts):
        return [f"Pattern validator for field {name} requires text values"]
    if not all(pattern.search(text) for text in texts):
        return [f"Field {name} does not match pattern {validator.pattern!r}"]
    return []


def _extract_all(
    html: str, recipe: Recipe, expected: Product
) -> tuple[dict[FieldId, Any], dict[FieldId, list[str]]]:
    soup = parse_html(html)
    base_url = expected.canonical_url
    values: dict[FieldId, Any] = {}
    errors: dict[FieldId, list[str]] = {}
    for field in recipe.target.fields:
        try:
            value = extract_field_value(soup, field, base_url=base_url, canonical_url=base_url)
        except (TransformError, SelectorSyntaxError) as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.TRANSFORM_FAILED,
                message=str(exc),
                suppressed=True,
                details={"field_id": field.field_id.value},
            )
            errors[field.field_id] = [str(exc)]
            value = None
        if field.field_id is FieldId.PRICE:
            value = reconstruct_money_raw(value, expected.price)
        values[field.field_id] = value
    return values, errors


def _short_circuit(
    recipe: Recipe,
    expected: Product,
    values: dict[FieldId, Any],
    extraction_errors: dict[FieldId, list[str]],
    missing: list[FieldId],
) -> DocumentValidationResult:
    message = f"Missing required fields: {', '.join(field.value for field in missing)}"
    results = []
    for field in recipe.target.fields:
        actual = values.get(field.field_id)
        absent = is_empty_value(actual)
        errors = list(extraction_errors.get(field.field_id, []))
        if absent:
            errors.append(f"No value extracted for field {field.field_id.value}")
        results.append(
            FieldValidationResult(
                field_id=field.field_id,
                status="fail" if absent else "pass",
                confidence=0.0 if absent else 0.5,
                expected=_plain(getattr(expected, field.field_id.value)),
                actual=_plain(actual),
                errors=errors,
            )
        )
    emit_structured_error(
        logger,
        code=ErrorCode.VALIDATION_SHORT_CIRCUIT,
        message=message,
        suppressed=True,
        details={"recipe": recipe.name},
    )
    return DocumentValidationResult(
        status="fail", confidence=0.0, field_results=results, errors=[message], stop_reason=message
    )


def validate_recipe_against_document(
    html: str, recipe: Recipe, expected: Product
) -> DocumentValidationResult:
    """Run ``recipe`` over ``html`` and judge every field against ``expected``.

    Relative URLs resolve against the expected canonical URL. Required fields
    that come back empty stop validation before the schema check.
    """
    values, extraction_errors = _extract_all(html, recipe, expected)

    missing = missing_required_fields(values)
    if missing:
        return _short_circuit(recipe, expected, values, extraction_errors, missing)

    try:
        actual_record = build_product(assemble_record(values))
    except RecordValidationError as exc:
        emit_structured_error(
            logger,
            code=ErrorCode.SCHEMA_VALIDATION_FAILED,
            message=str(exc),
            suppressed=True,
            details={"recipe": recipe.name},
        )
        return DocumentValidationResult(
            status="fail",
            confidence=0.0,
            errors=list(exc.violations),
            stop_reason="Schema validation failed",
        )

    results: list[FieldValidationResult] = []
    for field in recipe.target.fields:
        key = field.field_id.value
        expected_value = getattr(expected, key)
        actual_value = getattr(actual_record, key)
        comparison = compare_field(field.field_id, expected_value, actual_value, field.tolerance)
        errors = [
            *comparison.errors,
            *extraction_errors.get(field.field_id, []),
            *check_field_validators(field, actual_value),
        ]
        results.append(
            FieldValidationResult(
                field_id=field.field_id,
                status="pass" if comparison.passed and not errors else "fail",
                confidence=comparison.confidence,
                expected=_plain(expected_value),
                actual=_plain(actual_value),
                notes=comparison.notes,
                errors=errors,
            )
        )

    confidence = clamp_confidence(
        sum(result.confidence for result in results) / max(len(results), 1)
    )
    status: Literal["pass", "fail"] = (
        "pass" if all(result.status == "pass" for result in results) else "fail"
    )
    stop_reason = None
    if status == "fail":
        critical = next(
            (
                result
                for result in results
                if result.status == "fail" and result.field_id in CRITICAL_FIELDS
            ),
            None,
        )
        if critical is not None:
            stop_reason = f"Critical field {critical.field_id.value} failed validation"

    logger.debug("Validated %s: %s (confidence %.3f)", recipe.name, status, confidence)
    return DocumentValidationResult(
        status=status,
        confidence=confidence,
        field_results=results,
        errors=[error for result in results for error in result.errors],
        stop_reason=stop_reason,
    )


validate = validate_recipe_against_document
