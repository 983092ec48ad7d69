"""Field extraction — replays a field recipe's first selector step against a parsed document.

Shared by the Document Validator and the deterministic execution path. The
generic path selects nodes, reads text or an attribute and runs the field's
transform pipeline. Aggregate rating and breadcrumbs bypass it and parse a
fixed sub-structure of the document instead.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from sextant.core.recipe import FieldRecipe, SelectorStep
from sextant.core.schemas import Money
from sextant.core.tolerances import REQUIRED_FIELDS, FieldId
from sextant.core.transforms import apply_transforms
from sextant.document.dom import attribute_value, collapse_whitespace, element_text

RATING_CONTAINER_SELECTOR = '[data-test="aggregate-rating"]'
BREADCRUMB_ITEMS_SELECTOR = "nav.breadcrumbs ol li"

# Fields whose values are read from a fixed sub-structure, not the generic selector path.
STRUCTURED_FIELDS = (FieldId.AGGREGATE_RATING, FieldId.BREADCRUMBS)

_SKU_PREFIX_RE = re.compile(r"^sku:\s*", re.IGNORECASE)
_LEADING_FLOAT_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)")


class MissingRequiredField(Exception):
    """Raised when deterministic execution yields nothing for a required field."""

    def __init__(self, field_ids: list[FieldId]) -> None:
        self.field_ids = field_ids
        names = ", ".join(field.value for field in field_ids)
        super().__init__(f"Missing required fields: {names}")


class UnsupportedSelectorStrategy(ValueError):
    """Raised for selector strategies the extractor cannot execute (xpath)."""


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def select_nodes(soup: BeautifulSoup, step: SelectorStep) -> list[Tag]:
    """Nodes matched by ``step``, narrowed to ``step.ordinal`` when one is set."""
    if step.strategy != "css":
        raise UnsupportedSelectorStrategy(
            f"Selector strategy {step.strategy!r} is not supported (selector {step.value!r})"
        )
    nodes = soup.select(step.value)
    if step.ordinal is not None:
        return nodes[step.ordinal : step.ordinal + 1]
    return nodes


def _read_node(node: Tag, attribute: str | None) -> str:
    if attribute:
        return attribute_value(node, attribute) or ""
    return node.get_text()


def _leading_float(text: str) -> float | None:
    match = _LEADING_FLOAT_RE.match(text.strip())
    return float(match.group(0)) if match else None


def read_rating(container: Tag, canonical_url: str | None) -> dict[str, Any] | None:
    """Rating summary from a widget's ``.rating__value/.rating__best/.rating__count`` children."""

    def child_text(selector: str) -> str:
        return " ".join(element_text(node) for node in container.select(selector))

    rating_value = _leading_float(child_text(".rating__value"))
    if rating_value is None:
        return None

    rating: dict[str, Any] = {"rating_value": rating_value}
    count_digits = re.sub(r"[^0-9]", "", child_text(".rating__count"))
    if count_digits:
        rating["review_count"] = int(count_digits)
    best_rating = _leading_float(re.sub(r"[^0-9.]", "", child_text(".rating__best")))
    if best_rating is not None:
        rating["best_rating"] = best_rating
    if canonical_url:
        rating["url"] = f"{canonical_url}#reviews"
    return rating


def extract_aggregate_rating(
    soup: BeautifulSoup, step: SelectorStep | None, canonical_url: str | None
) -> dict[str, Any] | None:
    container = soup.select_one(RATING_CONTAINER_SELECTOR)
    if container is None and step is not None:
        matches = select_nodes(soup, step)
        container = matches[0] if matches else None
    if container is None:
        return None
    return read_rating(container, canonical_url)


def read_breadcrumbs(items: list[Tag], base_url: str | None) -> list[dict[str, Any]]:
    """Breadcrumbs from list items; link targets resolve against ``base_url``."""
    crumbs: list[dict[str, Any]] = []
    for item in items:
        label = element_text(item)
        if not label:
            continue
        crumb: dict[str, Any] = {"label": label, "position": len(crumbs) + 1}
        link = item.find("a")
        href = attribute_value(link, "href") if isinstance(link, Tag) else None
        if href:
            crumb["url"] = urljoin(base_url, href) if base_url else href
        crumbs.append(crumb)
    return crumbs


def extract_breadcrumbs(
    soup: BeautifulSoup, step: SelectorStep | None, base_url: str | None
) -> list[dict[str, Any]] | None:
    items = soup.select(BREADCRUMB_ITEMS_SELECTOR)
    if not items and step is not None:
        items = select_nodes(soup, step)
    return read_breadcrumbs(items, base_url) or None


def strip_sku_prefix(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return _SKU_PREFIX_RE.sub("", value).strip()


def extract_field_value(
    soup: BeautifulSoup,
    field: FieldRecipe,
    *,
    base_url: str | None = None,
    canonical_url: str | None = None,
) -> Any:
    """Extract and transform one field, returning ``None`` for an empty extraction.

    Raises ``TransformError`` when a transform rejects the raw value and
    ``UnsupportedSelectorStrategy`` for non-CSS steps.
    """
    step = field.primary_step
    if field.field_id is FieldId.AGGREGATE_RATING:
        return extract_aggregate_rating(soup, step, canonical_url)
    if field.field_id is FieldId.BREADCRUMBS:
        return extract_breadcrumbs(soup, step, canonical_url or base_url)

    nodes = select_nodes(soup, step)
    if step.all:
        raw: Any = [_read_node(node, step.attribute) for node in nodes]
        raw = [item for item in raw if not is_empty_value(item)]
    else:
        raw = _read_node(nodes[0], step.attribute) if nodes else ""
    if is_empty_value(raw):
        return None

    value = apply_transforms(field.transforms, raw, base_url=base_url)
    if field.field_id is FieldId.SKU:
        value = strip_sku_prefix(value)
    return None if is_empty_value(value) else value


def reconstruct_money_raw(value: Any, expected: Money | None) -> Any:
    """Carry the expected price's display text over to an extracted amount."""
    if not isinstance(value, Money):
        return value
    if expected is not None and expected.raw:
        raw = expected.raw
    else:
        raw = value.raw or f"{value.amount:.{value.precision}f} {value.currency_code}"
    return value.model_copy(update={"raw": raw})


def missing_required_fields(values: Mapping[FieldId, Any]) -> list[FieldId]:
    return [field_id for field_id in REQUIRED_FIELDS if is_empty_value(values.get(field_id))]


def assemble_record(values: Mapping[FieldId, Any]) -> dict[str, Any]:
    """Candidate record input from extracted values; empty values are left out."""
    return {
        field_id.value: value
        for field_id, value in values.items()
        if not is_empty_value(value)
    }
