"""Tolerant regex helpers for VTOP's server-rendered HTML.

VTOP emits ad hoc, frequently ill-formed markup (unclosed cells, attributes
in any order, inline styles instead of classes), so pages are scanned with
regular expressions over row/cell boundaries rather than parsed into a DOM.
"""

import html as html_lib
import re
from collections.abc import Callable, Iterable, Iterator
from typing import TypeVar

T = TypeVar("T")

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")
_CELL_RE = re.compile(r"<td[^>]*>([\s\S]*?)</td>", re.IGNORECASE)
_ROW_RE = re.compile(r"<tr[^>]*>([\s\S]*?)</tr>", re.IGNORECASE)
_CSRF_RE = re.compile(r'name="_csrf"[^>]*value="([^"]+)"', re.IGNORECASE)


def strip_tags(value: str | None) -> str:
    """Drop tags, decode entities and collapse whitespace."""
    if not value:
        return ""
    text = _TAG_RE.sub(" ", value)
    text = html_lib.unescape(text).replace("\xa0", " ")
    return _SPACE_RE.sub(" ", text).strip()


def iter_rows(html: str, pattern: re.Pattern[str] = _ROW_RE) -> Iterator[str]:
    """Yield the inner HTML of each <tr> matched by pattern (group 1)."""
    for match in pattern.finditer(html):
        yield match.group(1)


def row_cells(row_html: str) -> list[str]:
    """Inner HTML of each <td> in a row, in column order."""
    return _CELL_RE.findall(row_html)


def row_texts(row_html: str) -> list[str]:
    """Tag-stripped text of each <td> in a row, in column order."""
    return [strip_tags(cell) for cell in row_cells(row_html)]


def find_csrf(html: str) -> str | None:
    """Value of the first hidden _csrf input, if any."""
    match = _CSRF_RE.search(html)
    return match.group(1) if match else None


def first_match(
    strategies: Iterable[Callable[[str], T | None]], html: str
) -> tuple[T | None, int]:
    """Run strategies in order and return the first truthy result.

    Returns:
        (result, index of the strategy that produced it), or (None, -1).
    """
    for index, strategy in enumerate(strategies):
        result = strategy(html)
        if result:
            return result, index
    return None, -1
