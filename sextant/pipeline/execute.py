"""Deterministic recipe replay.

Once a recipe is stable it is executed directly against new documents. This
path never consults rule lookup, the document toolset or a budget guard; the
same html and recipe always produce the same record.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from sextant.core.recipe import Recipe
from sextant.core.schemas import Product, build_product
from sextant.core.tolerances import FieldId
from sextant.document.dom import parse_html
from sextant.pipeline.extraction import (
    STRUCTURED_FIELDS,
    MissingRequiredField,
    assemble_record,
    extract_field_value,
    missing_required_fields,
    reconstruct_money_raw,
)

logger = logging.getLogger(__name__)


class RecipeExecution(BaseModel):
    record: Product
    field_values: dict[FieldId, Any] = Field(default_factory=dict)


def execute_recipe(html: str, recipe: Recipe, *, base_url: str | None = None) -> RecipeExecution:
    """Replay every field of ``recipe`` against ``html``.

    Relative URLs resolve against ``base_url``. Rating and breadcrumb links
    resolve against the canonical URL extracted from the same document when
    there is one. Raises ``MissingRequiredField`` when a required field is
    empty and ``RecordValidationError`` when the assembled record is invalid.
    """
    soup = parse_html(html)
    fields = recipe.target.fields
    values: dict[FieldId, Any] = {}

    for field in fields:
        if field.field_id in STRUCTURED_FIELDS:
            continue
        value = extract_field_value(soup, field, base_url=base_url)
        if field.field_id is FieldId.PRICE:
            value = reconstruct_money_raw(value, None)
        values[field.field_id] = value

    canonical = values.get(FieldId.CANONICAL_URL)
    canonical_url = canonical if isinstance(canonical, str) else base_url
    for field in fields:
        if field.field_id in STRUCTURED_FIELDS:
            values[field.field_id] = extract_field_value(
                soup, field, base_url=base_url, canonical_url=canonical_url
            )

    missing = missing_required_fields(values)
    if missing:
        raise MissingRequiredField(missing)

    record = build_product(assemble_record(values))
    logger.debug("Executed recipe %s over %d fields", recipe.name, len(fields))
    return RecipeExecution(
        record=record,
        field_values={field.field_id: values.get(field.field_id) for field in fields},
    )
