"""Field catalogue and tolerance policies.

A tolerance decides whether an extracted value is close enough to the expected one.
Each field id has exactly one default tolerance; the template table is read-only
and callers always receive a deep copy.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class FieldId(str, Enum):
    """Named fields of the product record."""

    ID = "id"
    TITLE = "title"
    CANONICAL_URL = "canonical_url"
    DESCRIPTION = "description"
    PRICE = "price"
    IMAGES = "images"
    THUMBNAIL = "thumbnail"
    AGGREGATE_RATING = "aggregate_rating"
    BREADCRUMBS = "breadcrumbs"
    BRAND = "brand"
    SKU = "sku"


class ToleranceKind(str, Enum):
    TEXT = "text"
    MONEY = "money"
    URL = "url"
    IMAGE = "image"
    RATING = "rating"
    BREADCRUMBS = "breadcrumbs"


REQUIRED_FIELDS: tuple[FieldId, ...] = (
    FieldId.TITLE,
    FieldId.CANONICAL_URL,
    FieldId.PRICE,
    FieldId.IMAGES,
)

CRITICAL_FIELDS: tuple[FieldId, ...] = (FieldId.TITLE, FieldId.PRICE)


class TextTolerance(BaseModel):
    kind: Literal["text"] = "text"
    trim: bool = True
    case_sensitive: bool = False
    max_distance_ratio: float = Field(default=0.0, ge=0.0, le=1.0)


class MoneyTolerance(BaseModel):
    kind: Literal["money"] = "money"
    max_absolute_minor_units: int = Field(default=0, ge=0)
    max_relative_difference: float = Field(default=0.0, ge=0.0, le=1.0)


class UrlTolerance(BaseModel):
    kind: Literal["url"] = "url"
    normalize_trailing_slash: bool = True
    ignore_query: bool = False


class ImageTolerance(BaseModel):
    kind: Literal["image"] = "image"
    ignore_query: bool = True


class RatingTolerance(BaseModel):
    kind: Literal["rating"] = "rating"
    max_delta: float = Field(default=0.25, ge=0.0, le=5.0)


class BreadcrumbTolerance(BaseModel):
    kind: Literal["breadcrumbs"] = "breadcrumbs"
    allow_reordering: bool = False
    max_missing: int = Field(default=0, ge=0)


Tolerance = Annotated[
    Union[
        TextTolerance,
        MoneyTolerance,
        UrlTolerance,
        ImageTolerance,
        RatingTolerance,
        BreadcrumbTolerance,
    ],
    Field(discriminator="kind"),
]


FIELD_KINDS: MappingProxyType[FieldId, ToleranceKind] = MappingProxyType(
    {
        FieldId.ID: ToleranceKind.TEXT,
        FieldId.TITLE: ToleranceKind.TEXT,
        FieldId.CANONICAL_URL: ToleranceKind.URL,
        FieldId.DESCRIPTION: ToleranceKind.TEXT,
        FieldId.PRICE: ToleranceKind.MONEY,
        FieldId.IMAGES: ToleranceKind.IMAGE,
        FieldId.THUMBNAIL: ToleranceKind.IMAGE,
        FieldId.AGGREGATE_RATING: ToleranceKind.RATING,
        FieldId.BREADCRUMBS: ToleranceKind.BREADCRUMBS,
        FieldId.BRAND: ToleranceKind.TEXT,
        FieldId.SKU: ToleranceKind.TEXT,
    }
)

_DEFAULT_TOLERANCES: MappingProxyType[FieldId, BaseModel] = MappingProxyType(
    {
        FieldId.ID: TextTolerance(case_sensitive=True),
        FieldId.TITLE: TextTolerance(),
        FieldId.CANONICAL_URL: UrlTolerance(normalize_trailing_slash=True, ignore_query=False),
        FieldId.DESCRIPTION: TextTolerance(max_distance_ratio=0.1),
        FieldId.PRICE: MoneyTolerance(max_absolute_minor_units=1, max_relative_difference=0.0),
        FieldId.IMAGES: ImageTolerance(ignore_query=True),
        FieldId.THUMBNAIL: ImageTolerance(ignore_query=True),
        FieldId.AGGREGATE_RATING: RatingTolerance(max_delta=0.1),
        FieldId.BREADCRUMBS: BreadcrumbTolerance(allow_reordering=False, max_missing=0),
        FieldId.BRAND: TextTolerance(max_distance_ratio=0.05),
        FieldId.SKU: TextTolerance(case_sensitive=True),
    }
)


def field_kind(field_id: FieldId | str) -> ToleranceKind:
    """Return the comparison kind declared for a field id."""
    return FIELD_KINDS[FieldId(field_id)]


def get_default_tolerance(field_id: FieldId | str) -> Tolerance:
    """Return a private, mutable copy of the default tolerance for ``field_id``."""
    template = _DEFAULT_TOLERANCES[FieldId(field_id)]
    return template.model_copy(deep=True)
