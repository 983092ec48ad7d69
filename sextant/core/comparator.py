"""Tolerance comparator: type-aware equivalence between expected and extracted values.

The comparator never coerces. A value whose shape does not fit the declared
kind produces a failing result with confidence 0 and the mismatch message.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, Field

from sextant.core.schemas import AggregateRating, Breadcrumb, Money
from sextant.core.tolerances import (
    BreadcrumbTolerance,
    FieldId,
    ImageTolerance,
    MoneyTolerance,
    RatingTolerance,
    TextTolerance,
    Tolerance,
    ToleranceKind,
    UrlTolerance,
    field_kind,
)


_WHITESPACE_RE = re.compile(r"\s+")


class ToleranceTypeMismatch(TypeError):
    """Expected/actual shapes do not match the declared field kind."""


class ComparisonResult(BaseModel):
    status: Literal["pass", "fail"]
    confidence: float = Field(ge=0.0, le=1.0)
    notes: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "pass"


def clamp_confidence(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return min(1.0, max(0.0, value))


def _result(passed: bool, confidence: float, notes: list[str], errors: list[str]) -> ComparisonResult:
    return ComparisonResult(
        status="pass" if passed else "fail",
        confidence=clamp_confidence(confidence),
        notes=notes,
        errors=[] if passed else errors,
    )


def _failure(message: str) -> ComparisonResult:
    return ComparisonResult(status="fail", confidence=0.0, errors=[message])


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def normalize_text(value: str, *, trim: bool, case_sensitive: bool) -> str:
    text = value.strip() if trim else value
    text = _WHITESPACE_RE.sub(" ", text)
    return text if case_sensitive else text.lower()


def normalize_url(value: str, *, ignore_query: bool, normalize_trailing_slash: bool) -> str:
    """Canonical form of a URL; malformed input falls back to the trimmed string."""
    trimmed = value.strip()
    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return trimmed
    if not parts.scheme or not parts.netloc:
        return trimmed

    path = parts.path or "/"
    if normalize_trailing_slash:
        path = path.rstrip("/") or "/"
    query = "" if ignore_query else parts.query
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, parts.fragment))


def to_minor_units(amount: Decimal, precision: int) -> int:
    scaled = amount * (Decimal(10) ** precision)
    return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


def compare_text(expected: str, actual: str, tolerance: TextTolerance) -> ComparisonResult:
    left = normalize_text(expected, trim=tolerance.trim, case_sensitive=tolerance.case_sensitive)
    right = normalize_text(actual, trim=tolerance.trim, case_sensitive=tolerance.case_sensitive)
    distance = levenshtein_distance(left, right)
    ratio = distance / max(len(left), len(right), 1)
    passed = ratio <= tolerance.max_distance_ratio
    return _result(
        passed,
        1.0 - ratio,
        [f"Levenshtein ratio {ratio:.3f} (threshold {tolerance.max_distance_ratio:g})"],
        [f"Text difference {ratio:.3f} exceeds tolerance"],
    )


def compare_money(expected: Money, actual: Money, tolerance: MoneyTolerance) -> ComparisonResult:
    if expected.currency_code != actual.currency_code:
        return _failure(
            f"Currency mismatch: expected {expected.currency_code}, got {actual.currency_code}"
        )

    precision = expected.precision
    minor_delta = abs(
        to_minor_units(expected.amount, precision) - to_minor_units(actual.amount, precision)
    )
    if expected.amount == 0:
        relative = 0.0
    else:
        relative = float(abs(expected.amount - actual.amount) / expected.amount)

    within_absolute = minor_delta <= tolerance.max_absolute_minor_units
    # A zero relative limit leaves the absolute minor-unit bound in charge.
    within_relative = (
        tolerance.max_relative_difference == 0 or relative <= tolerance.max_relative_difference
    )
    passed = within_absolute and within_relative
    return _result(
        passed,
        1.0 - relative,
        [f"Minor unit delta {minor_delta}", f"Relative delta {relative:.3f}"],
        [f"Price delta {minor_delta} minor units, relative {relative:.3f} exceeds tolerance"],
    )


def compare_url(expected: str, actual: str, tolerance: UrlTolerance | ImageTolerance) -> ComparisonResult:
    if isinstance(tolerance, ImageTolerance):
        options = {"ignore_query": tolerance.ignore_query, "normalize_trailing_slash": True}
    else:
        options = {
            "ignore_query": tolerance.ignore_query,
            "normalize_trailing_slash": tolerance.normalize_trailing_slash,
        }
    left = normalize_url(expected, **options)
    right = normalize_url(actual, **options)
    passed = left == right
    return _result(
        passed,
        1.0 if passed else 0.0,
        [f"Normalized expected {left}", f"Normalized actual {right}"],
        ["URLs differ after normalization"],
    )


def compare_images(
    expected: Sequence[str], actual: Sequence[str], tolerance: ImageTolerance
) -> ComparisonResult:
    def normalize(url: str) -> str:
        return normalize_url(url, ignore_query=tolerance.ignore_query, normalize_trailing_slash=True)

    available = {normalize(url) for url in actual}
    wanted = [normalize(url) for url in expected]
    matched = sum(1 for url in wanted if url in available)
    passed = matched == len(wanted)
    return _result(
        passed,
        matched / max(len(wanted), 1),
        [f"Matched {matched}/{len(wanted)} images"],
        [f"Missing {len(wanted) - matched} expected images"],
    )


def compare_rating(
    expected: AggregateRating, actual: AggregateRating, tolerance: RatingTolerance
) -> ComparisonResult:
    delta = abs(expected.rating_value - actual.rating_value)
    passed = delta <= tolerance.max_delta
    if tolerance.max_delta > 0:
        confidence = 1.0 - delta / tolerance.max_delta if passed else 0.0
    else:
        confidence = 1.0 if passed else 0.0
    return _result(
        passed,
        confidence,
        [f"Rating delta {delta:.3f} (threshold {tolerance.max_delta:g})"],
        [f"Rating delta {delta:.3f} exceeds tolerance {tolerance.max_delta:g}"],
    )


def _same_crumb(left: Breadcrumb, right: Breadcrumb) -> bool:
    return left.label.strip() == right.label.strip() and left.url == right.url


def compare_breadcrumbs(
    expected: Sequence[Breadcrumb], actual: Sequence[Breadcrumb], tolerance: BreadcrumbTolerance
) -> ComparisonResult:
    matched = 0
    for index, crumb in enumerate(expected):
        candidate = None
        if tolerance.allow_reordering:
            candidate = next((item for item in actual if _same_crumb(crumb, item)), None)
        if candidate is None and index < len(actual):
            candidate = actual[index]
        if candidate is not None and _same_crumb(crumb, candidate):
            matched += 1

    missing = len(expected) - matched
    passed = missing <= tolerance.max_missing
    return _result(
        passed,
        matched / max(len(expected), 1),
        [f"Matched {matched}/{len(expected)} breadcrumbs"],
        [f"Missing {missing} breadcrumbs exceeds tolerance {tolerance.max_missing}"],
    )


def _ensure(condition: bool, message: str) -> None:
    if not condition:
        raise ToleranceTypeMismatch(message)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value)


def _dispatch(kind: ToleranceKind, expected: Any, actual: Any, tolerance: Tolerance) -> ComparisonResult:
    if kind is ToleranceKind.TEXT:
        _ensure(
            isinstance(expected, str) and isinstance(actual, str),
            "Expected string values for text comparison",
        )
        return compare_text(expected, actual, tolerance)
    if kind is ToleranceKind.MONEY:
        _ensure(
            isinstance(expected, Money) and isinstance(actual, Money),
            "Expected monetary values for money comparison",
        )
        return compare_money(expected, actual, tolerance)
    if kind is ToleranceKind.URL:
        _ensure(
            isinstance(expected, str) and isinstance(actual, str),
            "Expected URL strings for url comparison",
        )
        return compare_url(expected, actual, tolerance)
    if kind is ToleranceKind.IMAGE:
        if _is_str_list(expected) and _is_str_list(actual):
            return compare_images(expected, actual, tolerance)
        _ensure(
            isinstance(expected, str) and isinstance(actual, str),
            "Expected image URL strings or lists of image URLs on both sides",
        )
        return compare_url(expected, actual, tolerance)
    if kind is ToleranceKind.RATING:
        _ensure(
            isinstance(expected, AggregateRating) and isinstance(actual, AggregateRating),
            "Expected aggregate rating objects for rating comparison",
        )
        return compare_rating(expected, actual, tolerance)
    _ensure(
        isinstance(expected, (list, tuple))
        and isinstance(actual, (list, tuple))
        and all(isinstance(item, Breadcrumb) for item in [*expected, *actual]),
        "Expected breadcrumb lists for breadcrumb comparison",
    )
    return compare_breadcrumbs(expected, actual, tolerance)


def compare(
    field_kind: ToleranceKind | str, expected: Any, actual: Any, tolerance: Tolerance
) -> ComparisonResult:
    """Judge ``actual`` against ``expected`` under ``tolerance``.

    ``field_kind`` must agree with ``tolerance.kind``; a disagreement, or values
    whose shape does not fit the kind, yields a failing result carrying the
    ``ToleranceTypeMismatch`` message.
    """
    try:
        kind = ToleranceKind(field_kind)
        _ensure(
            tolerance.kind == kind.value,
            f"Tolerance kind {tolerance.kind!r} does not match field kind {kind.value!r}",
        )
        return _dispatch(kind, expected, actual, tolerance)
    except ToleranceTypeMismatch as exc:
        return _failure(str(exc))


def compare_field(
    field_id: FieldId | str, expected: Any, actual: Any, tolerance: Tolerance
) -> ComparisonResult:
    """Compare one record field, treating an absent side as a failure."""
    field = FieldId(field_id)
    if expected is None or actual is None:
        return _failure(f"Missing expected or actual value for field {field.value}")
    return compare(field_kind(field), expected, actual, tolerance)
