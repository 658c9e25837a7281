"""Structured markup (XML) parser with record element detection."""

from __future__ import annotations

import re
from collections import Counter
from typing import Any

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser

from ..exceptions import ParseError
from ..schemas.imports import ParseOptions
from .base import BaseParser, Row, apply_row_window, decode_content, is_empty_row

RECORD_ELEMENT_NAMES = (
    "record",
    "item",
    "row",
    "entry",
    "data",
    "result",
    "person",
    "case",
    "report",
)

_INTEGER = re.compile(r"^-?(0|[1-9]\d*)$")
_DECIMAL = re.compile(r"^-?\d+\.\d+([eE][-+]?\d+)?$")
_TIMESTAMP = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$"
)


def infer_scalar(text: str) -> Any:
    """Infer a scalar value from leaf text content."""

    value = text.strip()
    if value == "":
        return None
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INTEGER.match(value):
        return int(value)
    if _DECIMAL.match(value):
        return float(value)
    if _TIMESTAMP.match(value):
        try:
            return date_parser.isoparse(value).isoformat()
        except ValueError:
            return value
    return value


def _child_elements(element: Tag) -> list[Tag]:
    return [child for child in element.children if isinstance(child, Tag)]


def _attributes(element: Tag) -> dict[str, Any]:
    attributes: dict[str, Any] = {}
    for key, value in element.attrs.items():
        if key == "xmlns" or key.startswith("xmlns:"):
            continue
        if isinstance(value, list):
            value = " ".join(value)
        attributes[key] = infer_scalar(value)
    return attributes


def element_to_value(element: Tag) -> Any:
    """
    Convert an element into plain Python data.

    Leaves become scalars (or a mapping with a ``text`` key when they carry
    attributes); elements with children become mappings where repeated child
    tags collect into lists.
    """
    attributes = _attributes(element)
    children = _child_elements(element)

    if not children:
        value = infer_scalar(element.get_text())
        if attributes:
            if value is not None:
                attributes["text"] = value
            return attributes
        return value

    result: dict[str, Any] = dict(attributes)
    repeated: set[str] = set()
    for child in children:
        key = child.name
        value = element_to_value(child)
        if key not in result:
            result[key] = value
        elif key in repeated:
            result[key].append(value)
        else:
            result[key] = [result[key], value]
            repeated.add(key)
    return result


def _known_records(elements: list[Tag]) -> list[Tag]:
    return [element for element in elements if element.name in RECORD_ELEMENT_NAMES]


def _as_record(value: Any) -> Row:
    if isinstance(value, dict):
        return value
    return {"text": value}


class MarkupParser(BaseParser):
    """Parser for XML documents containing a list of repeating records."""

    format_name = "xml"

    def parse(self, content: str | bytes, options: ParseOptions | None = None) -> list[Row]:
        options = options or ParseOptions()
        text = decode_content(content, options.encoding)
        if not text.strip():
            return []

        try:
            document = BeautifulSoup(text, "xml")
        except Exception as exc:
            raise ParseError(f"Invalid XML: {exc}") from exc

        root = document.find(True)
        if root is None:
            raise ParseError("XML document has no root element")

        rows = [_as_record(element_to_value(element)) for element in self.find_records(root)]
        if options.skip_empty_rows:
            rows = [row for row in rows if not is_empty_row(row)]
        return apply_row_window(rows, options)

    def find_records(self, root: Tag) -> list[Tag]:
        """Return the elements that represent individual records.

        Known record names and repeated tags closest to the root win, so
        record-like names nested inside a record never replace it.
        """

        children = _child_elements(root)
        while True:
            known = _known_records(children)
            if known:
                return known
            if len(children) == 1 and _child_elements(children[0]):
                children = _child_elements(children[0])
                continue
            break

        if children:
            tag, count = Counter(child.name for child in children).most_common(1)[0]
            if count >= 2:
                return [child for child in children if child.name == tag]

        level = children
        while level:
            level = [grandchild for child in level for grandchild in _child_elements(child)]
            known = _known_records(level)
            if known:
                return known

        return [root]
