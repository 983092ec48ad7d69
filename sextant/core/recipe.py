"""Recipe data model: field-level extraction instructions plus lifecycle metadata."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from sextant.core.schemas import Product
from sextant.core.tolerances import FieldId, Tolerance, get_default_tolerance
from sextant.core.transforms import TransformInvocation


class SelectorStep(BaseModel):
    """One selector lookup. Only the first step of a field is executed today."""

    strategy: Literal["css", "xpath"] = "css"
    value: str = Field(min_length=1)
    attribute: str | None = Field(default=None, min_length=1)
    ordinal: int | None = Field(default=None, ge=0)
    all: bool = False
    note: str | None = None


class RequiredValidator(BaseModel):
    type: Literal["required"] = "required"


class RegexValidator(BaseModel):
    type: Literal["regex"] = "regex"
    pattern: str = Field(min_length=1)
    flags: str | None = None


class MinLengthValidator(BaseModel):
    type: Literal["min_length"] = "min_length"
    value: int = Field(ge=0)


FieldValidator = Annotated[
    Union[RequiredValidator, RegexValidator, MinLengthValidator],
    Field(discriminator="type"),
]


class FieldMetrics(BaseModel):
    sample_count: int = Field(default=0, ge=0)
    pass_count: int = Field(default=0, ge=0)
    fail_count: int = Field(default=0, ge=0)
    last_run_at: datetime | None = None


class FieldRecipe(BaseModel):
    field_id: FieldId
    description: str | None = None
    selector_steps: list[SelectorStep] = Field(min_length=1)
    transforms: list[TransformInvocation] = Field(default_factory=list)
    tolerance: Tolerance
    validators: list[FieldValidator] = Field(default_factory=list)
    metrics: FieldMetrics = Field(default_factory=FieldMetrics)
    sample: Any = None

    @property
    def primary_step(self) -> SelectorStep:
        return self.selector_steps[0]


class LifecycleState(str, Enum):
    DRAFT = "draft"
    CANDIDATE = "candidate"
    STABLE = "stable"
    RETIRED = "retired"


class LifecycleEvent(BaseModel):
    state: LifecycleState
    at: datetime
    actor: str | None = None
    notes: str | None = None


class RecipeLifecycle(BaseModel):
    state: LifecycleState
    since: datetime
    history: list[LifecycleEvent] = Field(default_factory=list)


class RecipeMetrics(BaseModel):
    total_runs: int = Field(default=0, ge=0)
    successful_runs: int = Field(default=0, ge=0)
    average_duration_ms: float | None = Field(default=None, ge=0)
    last_run_at: datetime | None = None


class ProvenanceRecord(BaseModel):
    field_id: FieldId
    evidence: str = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    notes: str | None = None


class RecipeTarget(BaseModel):
    document_type: Literal["product"] = "product"
    record: Product
    fields: list[FieldRecipe] = Field(min_length=1)

    @field_validator("fields")
    @classmethod
    def _unique_fields(cls, value: list[FieldRecipe]) -> list[FieldRecipe]:
        seen: set[FieldId] = set()
        for field in value:
            if field.field_id in seen:
                raise ValueError(f"Duplicate field recipe for {field.field_id.value}")
            seen.add(field.field_id)
        return value


class Recipe(BaseModel):
    id: str | None = None
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str | None = None
    created_at: datetime
    updated_at: datetime
    created_by: str | None = None
    updated_by: str | None = None
    target: RecipeTarget
    lifecycle: RecipeLifecycle
    metrics: RecipeMetrics = Field(default_factory=RecipeMetrics)
    provenance: list[ProvenanceRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_timestamps(self) -> Recipe:
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not precede created_at")
        return self

    def get_field(self, field_id: FieldId | str) -> FieldRecipe | None:
        wanted = FieldId(field_id)
        for field in self.target.fields:
            if field.field_id == wanted:
                return field
        return None


def create_field_recipe(
    field_id: FieldId,
    selector: str,
    *,
    sample: Any,
    description: str | None = None,
    note: str | None = None,
    attribute: str | None = None,
    ordinal: int | None = None,
    all_matches: bool = False,
    transforms: list[Any] | None = None,
    validators: list[Any] | None = None,
) -> FieldRecipe:
    """Build a single-step CSS field recipe with the field's default tolerance."""
    return FieldRecipe.model_validate(
        {
            "field_id": field_id,
            "description": description,
            "selector_steps": [
                {
                    "strategy": "css",
                    "value": selector,
                    "attribute": attribute,
                    "ordinal": ordinal,
                    "all": all_matches,
                    "note": note,
                }
            ],
            "transforms": transforms or [],
            "tolerance": get_default_tolerance(field_id),
            "validators": validators or [],
            "sample": sample,
        }
    )
