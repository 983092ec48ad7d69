"""Named value transforms applied to raw extractions.

Every transform is a pure function of its input and options. There is no
I/O and no locale lookup: numbers are always read in the en-US format.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Literal, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

from pydantic import BaseModel, Field, ValidationError

from sextant.core.schemas import Money


class TransformError(ValueError):
    """Raised when a transform cannot produce a value from its input."""


class TextCollapseOptions(BaseModel):
    collapse_whitespace: bool = True
    trim: bool = True
    preserve_newlines: bool = False


class MoneyParseOptions(BaseModel):
    currency_code: str = "USD"
    locale: Literal["en-US"] = "en-US"
    fallback_precision: int = Field(default=2, ge=0, le=4)


class UrlResolveOptions(BaseModel):
    base_url: str | None = None
    enforce_https: bool = False


class TextCollapse(BaseModel):
    name: Literal["text.collapse"] = "text.collapse"
    options: TextCollapseOptions = Field(default_factory=TextCollapseOptions)


class MoneyParse(BaseModel):
    name: Literal["money.parse"] = "money.parse"
    options: MoneyParseOptions = Field(default_factory=MoneyParseOptions)


class UrlResolve(BaseModel):
    name: Literal["url.resolve"] = "url.resolve"
    options: UrlResolveOptions = Field(default_factory=UrlResolveOptions)


TransformInvocation = Annotated[
    Union[TextCollapse, MoneyParse, UrlResolve],
    Field(discriminator="name"),
]


_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


def collapse_text(value: str, options: TextCollapseOptions | None = None) -> str:
    options = options or TextCollapseOptions()
    result = value
    if options.collapse_whitespace:
        if options.preserve_newlines:
            lines = [re.sub(r"[^\S\n]+", " ", line) for line in result.split("\n")]
            result = "\n".join(line.strip() if options.trim else line for line in lines)
        else:
            result = re.sub(r"\s+", " ", result)
    if options.trim:
        result = result.strip()
    return result


def parse_money(value: str, options: MoneyParseOptions | None = None) -> Money:
    options = options or MoneyParseOptions()
    raw = value.strip()
    sanitized = re.sub(r"[^0-9.,-]", "", raw).replace(",", "")
    match = _NUMBER_RE.search(sanitized)
    if match is None:
        raise TransformError(f"Unable to parse money value from {value!r}")
    number_text = match.group(0)
    try:
        amount = Decimal(number_text)
    except InvalidOperation as exc:
        raise TransformError(f"Unable to parse money value from {value!r}") from exc

    _, _, fraction = number_text.partition(".")
    precision = min(len(fraction), 4) if fraction else options.fallback_precision
    try:
        return Money(
            amount=amount,
            currency_code=options.currency_code,
            precision=precision,
            raw=raw or None,
        )
    except ValidationError as exc:
        raise TransformError(f"Invalid money value {value!r}: {exc.errors()[0]['msg']}") from exc


def resolve_url(value: str, options: UrlResolveOptions | None = None, base_url: str | None = None) -> str:
    """Resolve ``value`` to an absolute URL.

    ``options.base_url`` wins over the ``base_url`` supplied by the caller's
    document context.
    """
    options = options or UrlResolveOptions()
    candidate = value.strip()
    if not candidate:
        raise TransformError("Cannot resolve an empty URL")

    base = options.base_url or base_url
    resolved = urljoin(base, candidate) if base else candidate
    parts = urlsplit(resolved)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise TransformError(f"Cannot resolve {value!r} to an absolute URL")

    scheme = parts.scheme.lower()
    if options.enforce_https and scheme == "http":
        scheme = "https"
    return urlunsplit((scheme, parts.netloc.lower(), parts.path or "/", parts.query, parts.fragment))


def apply_transform(invocation: TransformInvocation, value: Any, base_url: str | None = None) -> Any:
    if not isinstance(value, str):
        raise TransformError(f"{invocation.name} expects text input, got {type(value).__name__}")
    if isinstance(invocation, TextCollapse):
        return collapse_text(value, invocation.options)
    if isinstance(invocation, MoneyParse):
        return parse_money(value, invocation.options)
    if isinstance(invocation, UrlResolve):
        return resolve_url(value, invocation.options, base_url=base_url)
    raise TransformError(f"Unknown transform {invocation!r}")


def apply_transforms(
    invocations: list[TransformInvocation], value: Any, base_url: str | None = None
) -> Any:
    """Run ``invocations`` in order, mapping over lists element-wise."""
    current = value
    for invocation in invocations:
        if isinstance(current, list):
            current = [apply_transform(invocation, item, base_url) for item in current]
        else:
            current = apply_transform(invocation, current, base_url)
    return current
