"""DOM helpers shared by the toolset, selector derivation and extraction.

Documents are parsed with BeautifulSoup's ``html.parser`` backend and queried
through soupsieve CSS selectors.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

# Attributes that anchor a CSS path: the walk stops at the first ancestor carrying one.
ANCHOR_ATTRIBUTES: tuple[str, ...] = (
    "data-test",
    "data-testid",
    "data-qa",
    "data-role",
    "itemprop",
    "itemtype",
    "itemid",
    "data-component",
    "data-field",
    "aria-label",
    "rel",
    "name",
    "property",
)

_WHITESPACE_RE = re.compile(r"\s+")
_IDENT_RE = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_-]*$")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def element_text(element: Tag) -> str:
    """Collapsed text content of ``element`` and its descendants."""
    return collapse_whitespace(element.get_text())


def attribute_value(element: Tag, name: str) -> str | None:
    """Attribute value as a string; multi-valued attributes are space-joined."""
    value = element.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def attribute_map(element: Tag) -> dict[str, str]:
    return {name: attribute_value(element, name) or "" for name in element.attrs}


def quote_attribute(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _same_tag_position(element: Tag) -> tuple[int, int]:
    parent = element.parent
    if not isinstance(parent, Tag) or isinstance(parent, BeautifulSoup):
        return 0, 0
    ordinal = total = 0
    for sibling in parent.find_all(element.name, recursive=False):
        total += 1
        if sibling is element:
            ordinal = total
    return ordinal, total


def build_css_path(element: Tag) -> str:
    """Build a selector that re-locates ``element`` in the same document.

    Walks from the element towards the root. A prioritized attribute or an id
    anchors the path and ends the walk; otherwise the segment is the tag plus
    its first class, disambiguated with ``:nth-of-type`` among same-tag siblings.
    """
    segments: list[str] = []
    current: Tag | None = element
    while isinstance(current, Tag) and not isinstance(current, BeautifulSoup):
        tag = current.name
        anchor = next((name for name in ANCHOR_ATTRIBUTES if attribute_value(current, name)), None)
        if anchor is not None:
            segments.append(f"{tag}[{anchor}={quote_attribute(attribute_value(current, anchor))}]")
            break

        element_id = attribute_value(current, "id")
        if element_id:
            if _IDENT_RE.match(element_id):
                segments.append(f"{tag}#{element_id}")
            else:
                segments.append(f"{tag}[id={quote_attribute(element_id)}]")
            break

        segment = tag
        classes = current.get("class") or []
        first_class = next((token for token in classes if token.strip()), None)
        if first_class and _IDENT_RE.match(first_class):
            segment += f".{first_class}"

        ordinal, total = _same_tag_position(current)
        if total > 1 and ordinal > 0:
            segment += f":nth-of-type({ordinal})"

        segments.append(segment)
        current = current.parent

    return " > ".join(reversed(segments))
