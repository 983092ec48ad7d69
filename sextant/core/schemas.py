"""Product record schema and the partial-record merge used during synthesis.

Records are strict: unknown keys are rejected, and construction through
``build_product`` reports every violated invariant at once instead of the
first one encountered.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def is_absolute_url(value: str) -> bool:
    """True when ``value`` parses as an absolute http(s) URL."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def _require_url(value: str) -> str:
    value = value.strip()
    if not is_absolute_url(value):
        raise ValueError(f"Invalid URL: {value!r}")
    return value


def _require_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class RecordValidationError(ValueError):
    """Raised when a candidate record violates the schema.

    ``violations`` holds one human-readable line per failed invariant.
    """

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__("; ".join(violations) or "Schema validation failed")

    @classmethod
    def from_pydantic(cls, error: ValidationError) -> RecordValidationError:
        violations = []
        for issue in error.errors():
            location = ".".join(str(part) for part in issue["loc"]) or "record"
            violations.append(f"{location}: {issue['msg']}")
        return cls(violations)


class Money(BaseModel):
    """A monetary amount; ``amount`` rounded to ``precision`` is the comparison value."""

    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(ge=0, allow_inf_nan=False)
    currency_code: str
    precision: int = Field(default=2, ge=0, le=4)
    raw: str | None = None

    @field_validator("currency_code", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper()
            if not _CURRENCY_RE.match(value):
                raise ValueError(f"Invalid ISO-4217 currency code: {value!r}")
        return value

    @field_validator("raw")
    @classmethod
    def _validate_raw(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return _require_text(value)


class Breadcrumb(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: str
    url: str | None = None
    position: int | None = Field(default=None, ge=1)

    @field_validator("label")
    @classmethod
    def _validate_label(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str | None) -> str | None:
        return None if value is None else _require_url(value)


class AggregateRating(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating_value: float = Field(ge=0, le=5)
    review_count: int | None = Field(default=None, ge=0)
    best_rating: float | None = Field(default=None, ge=0)
    worst_rating: float | None = Field(default=None, ge=0)
    url: str | None = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str | None) -> str | None:
        return None if value is None else _require_url(value)

    @model_validator(mode="after")
    def _check_bounds(self) -> AggregateRating:
        best, worst = self.best_rating, self.worst_rating
        if best is not None and worst is not None and best <= worst:
            raise ValueError("best_rating must be greater than worst_rating")
        if best is not None and self.rating_value > best:
            raise ValueError("rating_value must not exceed best_rating")
        if worst is not None and self.rating_value < worst:
            raise ValueError("rating_value must not be below worst_rating")
        return self


class Product(BaseModel):
    """The product record extracted from a document."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    title: str
    canonical_url: str
    description: str | None = None
    price: Money
    images: list[str] = Field(min_length=1)
    thumbnail: str | None = None
    aggregate_rating: AggregateRating | None = None
    breadcrumbs: list[Breadcrumb] | None = Field(default=None, min_length=1)
    brand: str | None = None
    sku: str | None = None

    @field_validator("id", "title", "brand", "sku")
    @classmethod
    def _non_empty(cls, value: str | None) -> str | None:
        return None if value is None else _require_text(value)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str | None) -> str | None:
        return None if value is None else value.strip()

    @field_validator("canonical_url", "thumbnail")
    @classmethod
    def _url(cls, value: str | None) -> str | None:
        return None if value is None else _require_url(value)

    @field_validator("images")
    @classmethod
    def _image_urls(cls, value: list[str]) -> list[str]:
        return [_require_url(item) for item in value]


class ProductDraft(BaseModel):
    """All-optional partial product used while a record is assembled step by step."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    title: str | None = None
    canonical_url: str | None = None
    description: str | None = None
    price: Money | None = None
    images: list[str] | None = None
    thumbnail: str | None = None
    aggregate_rating: AggregateRating | None = None
    breadcrumbs: list[Breadcrumb] | None = None
    brand: str | None = None
    sku: str | None = None

    def merge(self, other: ProductDraft) -> ProductDraft:
        return merge_drafts(self, other)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


def merge_records(base: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Merge two partial records, last write wins per leaf.

    Nested mappings are merged key by key; lists and scalars are leaves and
    replace the earlier value wholesale. ``None`` in ``update`` never erases.
    Neither input is modified.
    """
    merged: dict[str, Any] = dict(base)
    for key, value in update.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_records(current, value)
        elif isinstance(value, list):
            merged[key] = list(value)
        else:
            merged[key] = value
    return merged


def merge_drafts(base: ProductDraft, update: ProductDraft) -> ProductDraft:
    merged = merge_records(base.model_dump(exclude_none=True), update.model_dump(exclude_none=True))
    return ProductDraft.model_validate(merged)


def build_product(data: Mapping[str, Any] | ProductDraft) -> Product:
    """Validate ``data`` as a complete product or raise ``RecordValidationError``."""
    if isinstance(data, ProductDraft):
        data = data.model_dump(exclude_none=True)
    try:
        return Product.model_validate(dict(data))
    except ValidationError as exc:
        raise RecordValidationError.from_pydantic(exc) from exc
