"""Heuristic selector derivation — discovers CSS selectors with no prior configuration.

Deterministic and cheap. For each field a ``FieldProfile`` describes the
keywords, tag preferences and acceptance predicate. Derivation tries an
ordered list of candidate generators first and falls back to a scored scan
of the whole tree, turning the winning element into a CSS path.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel
from soupsieve import SelectorSyntaxError

from sextant.core.schemas import Money, ProductDraft
from sextant.core.tolerances import REQUIRED_FIELDS, FieldId
from sextant.core.transforms import MoneyParseOptions, TransformError, parse_money
from sextant.document.dom import attribute_value, build_css_path, collapse_whitespace, element_text
from sextant.document.toolset import DocumentToolset, HtmlQueryMatch, HtmlQueryResult

logger = logging.getLogger(__name__)

# Attributes probed by keyword candidates, in priority order.
ATTRIBUTE_SELECTOR_ATTRIBUTES: tuple[str, ...] = (
    "data-test",
    "data-testid",
    "data-qa",
    "data-role",
    "aria-label",
    "id",
    "class",
    "name",
    "itemprop",
    "property",
)

CURRENCY_MARKER_RE = re.compile(r"(\$|€|£|¥|USD|EUR|GBP|JPY|AUD|CAD)", re.IGNORECASE)
CURRENCY_CODE_RE = re.compile(r"(USD|EUR|GBP|JPY|AUD|CAD)", re.IGNORECASE)
CURRENCY_SYMBOLS: dict[str, str] = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}

_BRAND_LINE_RE = re.compile(r"brand|labs|co\b|inc\b|llc\b|shop", re.IGNORECASE)
_DIGIT_RE = re.compile(r"\d")
_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


class SelectorDerivationFailed(Exception):
    """No candidate selector satisfied a field's acceptance predicate."""

    def __init__(self, field_id: FieldId, reason: str | None = None) -> None:
        self.field_id = field_id
        message = f"Failed to derive a selector for {field_id.value}"
        super().__init__(f"{message}: {reason}" if reason else message)


class AcceptanceKind(str, Enum):
    """Field-specific acceptance predicates for candidate matches."""

    SEED_TOKENS = "seed-tokens"
    CURRENCY_AMOUNT = "currency-amount"
    ATTRIBUTE_PRESENT = "attribute-present"
    EVERY_MATCH_HAS_ATTRIBUTE = "every-match-has-attribute"
    RATING_WIDGET = "rating-widget"
    STRUCTURAL_MATCH = "structural-match"
    TEXT_PATTERN = "text-pattern"


@dataclass(frozen=True)
class FieldProfile:
    """How to look for one field in an unknown document."""

    field_id: FieldId
    acceptance: AcceptanceKind
    keywords: tuple[str, ...] = ()
    prefer_tags: tuple[str, ...] = ()
    allowed_tags: tuple[str, ...] = ()
    additional_selectors: tuple[str, ...] = ()
    direct_selectors: tuple[str, ...] = ()
    text_pattern: re.Pattern[str] | None = None
    acceptance_pattern: re.Pattern[str] | None = None
    attribute: str | None = None
    limit: int = 5
    selector_limit: int = 8
    allow_partial: bool = False

    @property
    def required(self) -> bool:
        return self.field_id in REQUIRED_FIELDS


class DerivedSelector(BaseModel):
    field_id: FieldId
    selector: str
    strategy: Literal["attribute-candidate", "scored-scan"]
    result: HtmlQueryResult


def to_search_tokens(value: str) -> list[str]:
    """Lowercased alphanumeric tokens longer than two characters."""
    return [
        token
        for token in _TOKEN_SPLIT_RE.split(collapse_whitespace(value).lower())
        if len(token) > 2
    ]


def create_attribute_selectors(keyword: str, tags: Sequence[str] = ()) -> list[str]:
    """``*=`` and ``=`` attribute selectors for ``keyword``, each optionally tag-prefixed."""
    normalized = keyword.strip().lower()
    if not normalized:
        return []
    selectors: list[str] = []

    def wrap(selector: str) -> None:
        for tag in tags:
            selectors.append(f"{tag}{selector}")
        selectors.append(selector)

    for attribute in ATTRIBUTE_SELECTOR_ATTRIBUTES:
        wrap(f'[{attribute}*="{normalized}"]')
        wrap(f'[{attribute}="{normalized}"]')
    return unique_selectors(selectors)


def unique_selectors(selectors: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for selector in selectors:
        trimmed = selector.strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        ordered.append(trimmed)
    return ordered


# --- Candidate generators ---


def _additional_candidates(profile: FieldProfile) -> list[str]:
    return list(profile.additional_selectors)


def _direct_candidates(profile: FieldProfile) -> list[str]:
    return list(profile.direct_selectors)


def _keyword_candidates(profile: FieldProfile) -> list[str]:
    selectors: list[str] = []
    for keyword in profile.keywords:
        selectors.extend(create_attribute_selectors(keyword, profile.prefer_tags))
        selectors.extend(create_attribute_selectors(keyword))
    return selectors


CANDIDATE_GENERATORS: tuple[Callable[[FieldProfile], list[str]], ...] = (
    _additional_candidates,
    _direct_candidates,
    _keyword_candidates,
)


def candidate_selectors(profile: FieldProfile) -> list[str]:
    """Ordered, de-duplicated candidate selectors capped at ``selector_limit``."""
    selectors: list[str] = []
    for generator in CANDIDATE_GENERATORS:
        selectors.extend(generator(profile))
    return unique_selectors(selectors)[: profile.selector_limit]


# --- Acceptance ---


def _match_attribute(match: HtmlQueryMatch, attribute: str | None) -> str | None:
    if not attribute:
        return None
    return match.attribute_value or match.attributes.get(attribute) or None


def accepts(
    profile: FieldProfile, matches: Sequence[HtmlQueryMatch], tokens: Sequence[str] = ()
) -> bool:
    """Evaluate ``profile``'s acceptance predicate against query matches."""
    if not matches:
        return False
    kind = profile.acceptance
    if kind is AcceptanceKind.SEED_TOKENS:
        text = matches[0].text.lower()
        return all(token in text for token in tokens) if tokens else bool(text)
    if kind is AcceptanceKind.CURRENCY_AMOUNT:
        return any(
            CURRENCY_MARKER_RE.search(match.text) and _DIGIT_RE.search(match.text)
            for match in matches
        )
    if kind is AcceptanceKind.ATTRIBUTE_PRESENT:
        return any(_match_attribute(match, profile.attribute) for match in matches)
    if kind is AcceptanceKind.EVERY_MATCH_HAS_ATTRIBUTE:
        return all(_match_attribute(match, profile.attribute) for match in matches)
    if kind is AcceptanceKind.RATING_WIDGET:
        return any(
            _DIGIT_RE.search(match.text) or "rating" in match.html.lower() for match in matches
        )
    if kind is AcceptanceKind.TEXT_PATTERN:
        pattern = profile.acceptance_pattern
        return any(pattern is None or pattern.search(match.text) for match in matches)
    return True


def find_matching_selector(
    toolset: DocumentToolset,
    profile: FieldProfile,
    selectors: Sequence[str],
    tokens: Sequence[str] = (),
) -> tuple[str, HtmlQueryResult] | None:
    """First selector whose matches satisfy the acceptance predicate."""
    for selector in selectors:
        try:
            result = toolset.query_html(selector, attribute=profile.attribute, limit=profile.limit)
        except SelectorSyntaxError:
            logger.debug("Skipping unparseable selector %s", selector)
            continue
        if result.matches and accepts(profile, result.matches, tokens):
            return selector, result
    return None


# --- Scored scan ---


def _attribute_hint_score(element: Tag, hints: Sequence[str]) -> int:
    score = 0
    for hint in hints:
        for name in element.attrs:
            if hint in name.lower():
                score += 3
            if hint in (attribute_value(element, name) or "").lower():
                score += 4
    return score


def select_element(
    soup: BeautifulSoup,
    *,
    seeds: Sequence[str] = (),
    hints: Sequence[str] = (),
    prefer_tags: Sequence[str] = (),
    allowed_tags: Sequence[str] = (),
    text_pattern: re.Pattern[str] | None = None,
    allow_partial: bool = False,
) -> Tag | None:
    """Highest-scoring element across the whole tree; ties keep the first seen.

    Score is seed-token overlap (minus a length-difference penalty) plus
    bonuses for attribute hints, preferred tags, ``data-test`` and ``id``.
    """
    tokens = [token for seed in seeds for token in to_search_tokens(seed)]
    joined_tokens = " ".join(tokens)
    lowered_hints = [hint.lower() for hint in hints]
    preferred = {tag.lower() for tag in prefer_tags}
    allowed = {tag.lower() for tag in allowed_tags}

    best: Tag | None = None
    best_score = 0.0
    for element in soup.find_all(True):
        tag = element.name.lower()
        if allowed and tag not in allowed:
            continue
        text = element_text(element)
        if text_pattern is not None and not text_pattern.search(text):
            continue

        score = 0.0
        matched = 0
        if tokens:
            lowered = text.lower()
            hits = [token for token in tokens if token in lowered]
            if not hits or (not allow_partial and len(hits) != len(tokens)):
                continue
            matched = len(hits)
            score += sum(min(len(token), 8) for token in hits)
            score -= min(abs(len(lowered) - len(joined_tokens)), 60) * 0.05

        score += _attribute_hint_score(element, lowered_hints)
        if tag in preferred:
            score += 3
        if attribute_value(element, "data-test"):
            score += 2
        if attribute_value(element, "id"):
            score += 2

        if score <= 0:
            if not matched:
                continue
            score += matched * 2

        if best is None or score > best_score:
            best, best_score = element, score
    return best


def derive_selector(
    soup: BeautifulSoup,
    toolset: DocumentToolset,
    profile: FieldProfile,
    *,
    seeds: Sequence[str] = (),
) -> DerivedSelector:
    """Find a selector for ``profile.field_id`` or raise ``SelectorDerivationFailed``."""
    seeds = [seed for seed in seeds if seed]
    tokens = [token for seed in seeds for token in to_search_tokens(seed)]

    found = find_matching_selector(toolset, profile, candidate_selectors(profile), tokens)
    if found is not None:
        selector, result = found
        logger.debug("Accepted candidate %s for %s", selector, profile.field_id.value)
        return DerivedSelector(
            field_id=profile.field_id, selector=selector, strategy="attribute-candidate", result=result
        )

    if seeds or profile.keywords:
        element = select_element(
            soup,
            seeds=seeds,
            hints=profile.keywords,
            prefer_tags=profile.prefer_tags,
            allowed_tags=profile.allowed_tags,
            text_pattern=profile.text_pattern,
            allow_partial=profile.allow_partial,
        )
        if element is not None:
            selector = build_css_path(element)
            result = toolset.query_html(selector, attribute=profile.attribute, limit=profile.limit)
            if result.matches and accepts(profile, result.matches, tokens):
                logger.debug("Accepted scored path %s for %s", selector, profile.field_id.value)
                return DerivedSelector(
                    field_id=profile.field_id, selector=selector, strategy="scored-scan", result=result
                )

    raise SelectorDerivationFailed(profile.field_id)


# --- Field profiles ---

TITLE_PROFILE = FieldProfile(
    field_id=FieldId.TITLE,
    acceptance=AcceptanceKind.SEED_TOKENS,
    keywords=("title", "headline", "product"),
    prefer_tags=("h1", "h2", "p"),
    direct_selectors=("h1",),
    selector_limit=6,
)

BRAND_PROFILE = FieldProfile(
    field_id=FieldId.BRAND,
    acceptance=AcceptanceKind.SEED_TOKENS,
    keywords=("brand", "eyebrow", "maker"),
    prefer_tags=("p", "span"),
    selector_limit=6,
)

PRICE_PROFILE = FieldProfile(
    field_id=FieldId.PRICE,
    acceptance=AcceptanceKind.CURRENCY_AMOUNT,
    keywords=("price", "amount", "offer", "cost"),
    prefer_tags=("p", "div", "span"),
    text_pattern=CURRENCY_MARKER_RE,
    selector_limit=8,
)

CANONICAL_URL_PROFILE = FieldProfile(
    field_id=FieldId.CANONICAL_URL,
    acceptance=AcceptanceKind.ATTRIBUTE_PRESENT,
    keywords=("canonical",),
    allowed_tags=("link",),
    additional_selectors=('link[rel="canonical"]', 'head link[rel*="canonical"]'),
    attribute="href",
    limit=1,
    selector_limit=6,
)

DESCRIPTION_PROFILE = FieldProfile(
    field_id=FieldId.DESCRIPTION,
    acceptance=AcceptanceKind.ATTRIBUTE_PRESENT,
    keywords=("description",),
    allowed_tags=("meta",),
    additional_selectors=('meta[name="description"]', 'meta[name*="description"]'),
    attribute="content",
    limit=1,
    selector_limit=6,
)

IMAGES_PROFILE = FieldProfile(
    field_id=FieldId.IMAGES,
    acceptance=AcceptanceKind.EVERY_MATCH_HAS_ATTRIBUTE,
    keywords=("gallery", "image", "product"),
    prefer_tags=("img",),
    additional_selectors=("figure img",),
    attribute="src",
    limit=12,
    selector_limit=6,
)

AGGREGATE_RATING_PROFILE = FieldProfile(
    field_id=FieldId.AGGREGATE_RATING,
    acceptance=AcceptanceKind.RATING_WIDGET,
    keywords=("rating", "reviews", "score"),
    prefer_tags=("div", "section"),
    additional_selectors=('[itemprop="aggregateRating"]',),
    selector_limit=8,
)

BREADCRUMBS_PROFILE = FieldProfile(
    field_id=FieldId.BREADCRUMBS,
    acceptance=AcceptanceKind.STRUCTURAL_MATCH,
    keywords=("breadcrumb", "breadcrumbs"),
    additional_selectors=(
        'nav[aria-label*="breadcrumb"] li',
        'nav[class*="breadcrumb"] li',
        'ol[class*="breadcrumb"] li',
    ),
    limit=8,
    selector_limit=6,
)

SKU_PROFILE = FieldProfile(
    field_id=FieldId.SKU,
    acceptance=AcceptanceKind.TEXT_PATTERN,
    acceptance_pattern=re.compile(r"sku", re.IGNORECASE),
    keywords=("sku", "product-sku"),
    prefer_tags=("p", "span", "li"),
    allow_partial=True,
    selector_limit=6,
)

FIELD_PROFILES: dict[FieldId, FieldProfile] = {
    profile.field_id: profile
    for profile in (
        TITLE_PROFILE,
        BRAND_PROFILE,
        PRICE_PROFILE,
        CANONICAL_URL_PROFILE,
        DESCRIPTION_PROFILE,
        IMAGES_PROFILE,
        AGGREGATE_RATING_PROFILE,
        BREADCRUMBS_PROFILE,
        SKU_PROFILE,
    )
}


# --- Transcript seeding ---


def infer_currency_code(text: str, default: str = "USD") -> str:
    """Explicit ISO code in ``text`` first, then a known symbol, then ``default``."""
    match = CURRENCY_CODE_RE.search(text)
    if match:
        return match.group(1).upper()
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    return default


def find_price_line(lines: Sequence[str]) -> str | None:
    return next(
        (line for line in lines if CURRENCY_MARKER_RE.search(line) and _DIGIT_RE.search(line)),
        None,
    )


def parse_price_text(text: str) -> Money:
    """Money from display text such as ``$149.00``; raises ``TransformError``."""
    return parse_money(text, MoneyParseOptions(currency_code=infer_currency_code(text)))


def seed_draft_from_transcript(lines: Sequence[str]) -> ProductDraft:
    """Partial record guessed from transcript lines.

    Title is the first line, brand the first brand-like line (else the
    second line), price the first line carrying a currency marker and a digit.
    """
    cleaned = [collapse_whitespace(line) for line in lines]
    cleaned = [line for line in cleaned if line]
    if not cleaned:
        return ProductDraft()

    title = cleaned[0]
    brand = next((line for line in cleaned if _BRAND_LINE_RE.search(line)), None)
    if brand is None and len(cleaned) > 1:
        brand = cleaned[1]

    price = None
    price_line = find_price_line(cleaned)
    if price_line is not None:
        try:
            price = parse_price_text(price_line)
        except TransformError:
            logger.debug("Transcript price line %r is not parseable", price_line)
    return ProductDraft(title=title, brand=brand, price=price)
