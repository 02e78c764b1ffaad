"""BeautifulSoup helpers used to pull values out of rendered page HTML."""
from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from .errors import ParseFailure

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

# (selector, attribute); a None selector means the row element itself
FieldSpec = Tuple[Optional[str], Optional[str]]


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def element_value(element: Tag, attribute: Optional[str] = None) -> Optional[str]:
    """Return the attribute (or the visible text) of an element, None if empty."""
    if attribute:
        raw = element.get(attribute)
        if isinstance(raw, list):
            raw = " ".join(raw)
    else:
        raw = element.get_text(" ", strip=True)
    if raw is None:
        return None
    raw = clean_text(str(raw))
    return raw or None


def select_text(soup: BeautifulSoup, selector: str, attribute: Optional[str] = None) -> Optional[str]:
    """Value of the first element matching ``selector`` that has one."""
    for element in soup.select(selector):
        value = element_value(element, attribute)
        if value is not None:
            return value
    return None


def select_all(
    soup: BeautifulSoup,
    row_selector: Optional[str],
    inner_selector: str,
    attribute: Optional[str] = None,
) -> List[str]:
    """Ordered values for ``inner_selector``.

    With a row selector, each row contributes the value of its first inner
    match; rows without one are skipped. Without a row selector, every
    element matching ``inner_selector`` contributes.
    """
    values: List[str] = []
    if row_selector is None:
        for element in soup.select(inner_selector):
            value = element_value(element, attribute)
            if value is not None:
                values.append(value)
        return values

    for row in soup.select(row_selector):
        inner = row.select_one(inner_selector)
        if inner is None:
            continue
        value = element_value(inner, attribute)
        if value is not None:
            values.append(value)
    return values


def select_rows(
    soup: BeautifulSoup,
    row_selector: str,
    fields: Mapping[str, FieldSpec],
) -> List[Dict[str, Optional[str]]]:
    """One dict per row, keyed like ``fields``; missing values are None."""
    rows: List[Dict[str, Optional[str]]] = []
    for row in soup.select(row_selector):
        record: Dict[str, Optional[str]] = {}
        for key, spec in fields.items():
            selector, attribute = spec
            inner = row.select_one(selector) if selector else row
            record[key] = element_value(inner, attribute) if inner is not None else None
        rows.append(record)
    return rows


def parse_result_count(text: Optional[str]) -> int:
    """Parse a free-text, comma-grouped result counter such as ``"1,234 results"``."""
    if text is None:
        raise ParseFailure("result count indicator is absent")
    match = _LEADING_INT.match(text.replace(",", ""))
    if not match:
        raise ParseFailure(f"result count is not numeric: {text!r}")
    return int(match.group(1))
