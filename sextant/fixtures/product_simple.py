"""The ``product-simple`` fixture: a single product page with known-good expectations."""

from __future__ import annotations

from typing import Any

from sextant.conduit.rules import DocumentRuleSet
from sextant.core.recipe import create_field_recipe
from sextant.core.schemas import Product
from sextant.core.tolerances import FieldId
from sextant.document.toolset import HtmlChunkDefinition
from sextant.fixtures.cache import FixtureCache, FixtureDefinition

PRODUCT_SIMPLE_ID = "product-simple"
PRODUCT_SIMPLE_DOMAIN = "demo.sextant.dev"
PRODUCT_SIMPLE_PATH = "/products/precision-pour-over-kettle"

_CANONICAL = f"https://{PRODUCT_SIMPLE_DOMAIN}{PRODUCT_SIMPLE_PATH}"
_IMAGE_ROOT = "https://cdn.sextant.dev/assets/kettle"

PRODUCT_SIMPLE_RECORD = Product.model_validate(
    {
        "title": "Precision Pour-Over Kettle",
        "canonical_url": _CANONICAL,
        "description": (
            "Precision Pour-Over Kettle with variable temperature control, balanced "
            "gooseneck spout, and 0.8 L capacity."
        ),
        "price": {"amount": "149.00", "currency_code": "USD", "precision": 2, "raw": "$149.00"},
        "images": [
            f"{_IMAGE_ROOT}/precision-pour-over-kettle.jpg",
            f"{_IMAGE_ROOT}/precision-pour-over-kettle-angle.jpg",
        ],
        "thumbnail": f"{_IMAGE_ROOT}/precision-pour-over-kettle.jpg",
        "aggregate_rating": {
            "rating_value": 4.6,
            "review_count": 128,
            "best_rating": 5,
            "url": f"{_CANONICAL}#reviews",
        },
        "breadcrumbs": [
            {"label": "Home", "url": f"https://{PRODUCT_SIMPLE_DOMAIN}/"},
            {"label": "Kitchen", "url": f"https://{PRODUCT_SIMPLE_DOMAIN}/kitchen"},
            {"label": "Coffee & Tea", "url": f"https://{PRODUCT_SIMPLE_DOMAIN}/kitchen/coffee-tea"},
            {"label": "Precision Pour-Over Kettle"},
        ],
        "brand": "Brimstone Labs",
        "sku": "BR-PPK-08",
    }
)

PRODUCT_SIMPLE_OCR = [
    "Precision Pour-Over Kettle",
    "Brimstone Labs",
    "Variable temperature gooseneck kettle",
    "$149.00",
    "Add to cart",
]

PRODUCT_SIMPLE_CHUNKS = [
    HtmlChunkDefinition(
        id="breadcrumbs",
        label="Breadcrumbs",
        selector='[data-fixture-chunk="breadcrumbs"]',
        description="Ordered list navigation representing the global breadcrumb trail.",
    ),
    HtmlChunkDefinition(
        id="hero",
        label="Hero",
        selector='[data-fixture-chunk="hero"]',
        description="Title, pricing, gallery, and primary call-to-action elements.",
    ),
    HtmlChunkDefinition(
        id="details",
        label="Details",
        selector='[data-fixture-chunk="details"]',
        description="Long-form description copy, specifications and highlights.",
    ),
    HtmlChunkDefinition(
        id="qa",
        label="Questions & Answers",
        selector='[data-fixture-chunk="qa"]',
        description="FAQ entries answered inline.",
    ),
]

PRODUCT_SIMPLE = FixtureDefinition(
    id=PRODUCT_SIMPLE_ID,
    domain=PRODUCT_SIMPLE_DOMAIN,
    path=PRODUCT_SIMPLE_PATH,
    expected_record=PRODUCT_SIMPLE_RECORD,
    ocr_transcript=PRODUCT_SIMPLE_OCR,
    html_chunks=PRODUCT_SIMPLE_CHUNKS,
)


def _sample(field_id: FieldId) -> Any:
    value = getattr(PRODUCT_SIMPLE_RECORD, field_id.value)
    if isinstance(value, list):
        return [item.model_dump(mode="json", exclude_none=True) if hasattr(item, "model_dump") else item for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", exclude_none=True)
    return value


def _field_rules() -> list[dict[str, Any]]:
    def rule(field_id: FieldId, selector: str, *, source="html", chunk_id=None, confidence, **options):
        recipe = create_field_recipe(field_id, selector, sample=_sample(field_id), **options)
        return {"recipe": recipe, "source": source, "chunk_id": chunk_id, "confidence": confidence}

    return [
        rule(
            FieldId.TITLE,
            '[data-test="product-title"]',
            chunk_id="hero",
            confidence=0.9,
            description="Primary product title from hero header.",
            note="Hero product title element",
            transforms=[{"name": "text.collapse"}],
            validators=[{"type": "required"}],
        ),
        rule(
            FieldId.PRICE,
            '[data-test="product-price"]',
            chunk_id="hero",
            confidence=0.9,
            description="Price container including currency symbol and amount.",
            note="Container with price currency symbol and numeric value",
            transforms=[
                {"name": "text.collapse"},
                {"name": "money.parse", "options": {"currency_code": "USD"}},
            ],
            validators=[{"type": "required"}],
        ),
        rule(
            FieldId.IMAGES,
            '[data-test="gallery-image"]',
            chunk_id="hero",
            confidence=0.8,
            description="Gallery images resolved to absolute URLs.",
            note="Collect gallery image sources",
            attribute="src",
            all_matches=True,
            transforms=[{"name": "url.resolve"}],
            validators=[{"type": "min_length", "value": 1}],
        ),
        rule(
            FieldId.THUMBNAIL,
            '[data-test="gallery-image"][data-position="1"]',
            chunk_id="hero",
            confidence=0.8,
            description="First gallery image used as thumbnail.",
            note="Use the first gallery image as the thumbnail",
            attribute="src",
            transforms=[{"name": "url.resolve"}],
            validators=[{"type": "required"}],
        ),
        rule(
            FieldId.CANONICAL_URL,
            'link[rel="canonical"]',
            confidence=0.7,
            description="Canonical URL declared in the document head.",
            note="Canonical link relation in document head",
            attribute="href",
            transforms=[{"name": "url.resolve", "options": {"enforce_https": True}}],
            validators=[{"type": "required"}],
        ),
        rule(
            FieldId.DESCRIPTION,
            'meta[name="description"]',
            confidence=0.6,
            description="Meta description summarizing the product.",
            note="Meta description content attribute",
            attribute="content",
            transforms=[{"name": "text.collapse"}],
            validators=[{"type": "min_length", "value": 20}],
        ),
        rule(
            FieldId.AGGREGATE_RATING,
            '[data-test="aggregate-rating"]',
            chunk_id="hero",
            confidence=0.7,
            description="Aggregate rating widget displaying value and count.",
            note="Rating container includes value, best and count children",
        ),
        rule(
            FieldId.BREADCRUMBS,
            "nav.breadcrumbs ol li",
            chunk_id="breadcrumbs",
            confidence=0.7,
            description="Breadcrumb navigation list items.",
            note="Breadcrumb ordered list items",
            all_matches=True,
            validators=[{"type": "min_length", "value": 1}],
        ),
        rule(
            FieldId.BRAND,
            ".product__eyebrow",
            chunk_id="hero",
            confidence=0.6,
            description="Brand eyebrow text in hero.",
            note="Hero eyebrow element shows brand name",
            transforms=[{"name": "text.collapse"}],
            validators=[{"type": "required"}],
        ),
        rule(
            FieldId.SKU,
            '[data-test="sku"]',
            confidence=0.6,
            description="Footer SKU field containing identifier text.",
            note="Footer element with SKU label",
            transforms=[{"name": "text.collapse"}],
            validators=[{"type": "required"}],
        ),
    ]


def _evidence_instructions() -> list[dict[str, Any]]:
    return [
        {
            "kind": "html-query",
            "field_id": "title",
            "source": "html",
            "selector": '[data-test="product-title"]',
            "chunk_id": "hero",
            "limit": 1,
            "mode": "first-text",
            "confidence": 0.9,
        },
        {
            "kind": "html-query",
            "field_id": "price",
            "source": "html",
            "selector": '[data-test="product-price"]',
            "chunk_id": "hero",
            "limit": 1,
            "mode": "first-text",
            "confidence": 0.9,
        },
        {
            "kind": "html-query",
            "field_id": "breadcrumbs",
            "source": "html",
            "selector": "nav.breadcrumbs li",
            "chunk_id": "breadcrumbs",
            "limit": 4,
            "mode": "join-text",
            "join_with": " › ",
            "confidence": 0.8,
        },
        {
            "kind": "markdown-search",
            "field_id": "brand",
            "source": "markdown",
            "query": PRODUCT_SIMPLE_RECORD.brand,
            "max_snippets": 1,
            "confidence": 0.5,
        },
        {
            "kind": "vision-ocr",
            "field_id": "title",
            "source": "vision",
            "line_index": 0,
            "confidence": 0.6,
        },
    ]


def build_product_simple_rule_set() -> DocumentRuleSet:
    """Rule configuration for every page under ``/products/:slug`` on the demo domain."""
    return DocumentRuleSet.model_validate(
        {
            "id": PRODUCT_SIMPLE_ID,
            "domain": PRODUCT_SIMPLE_DOMAIN,
            "path_pattern": "/products/:slug",
            "document_type": "product",
            "version": "0.1.0",
            "expected_record": PRODUCT_SIMPLE_RECORD,
            "metadata": {
                "name": "demo-product-simple",
                "description": "Rule configuration derived from the product simple fixture.",
                "created_by": "fixtures@sextant",
                "updated_by": "fixtures@sextant",
            },
            "html_chunks": PRODUCT_SIMPLE_CHUNKS,
            "evidence_instructions": _evidence_instructions(),
            "field_rules": _field_rules(),
            "provided_ocr_transcript": PRODUCT_SIMPLE_OCR,
        }
    )


def load_product_simple(cache: FixtureCache | None = None):
    """Convenience loader returning the fixture document from ``cache``."""
    return (cache or FixtureCache()).load(PRODUCT_SIMPLE_ID)
