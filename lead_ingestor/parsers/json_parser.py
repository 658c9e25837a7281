"""JSON document parser."""

from __future__ import annotations

import json
from typing import Any

from ..exceptions import ParseError
from ..schemas.imports import ParseOptions
from .base import BaseParser, Row, apply_row_window, decode_content, is_empty_row


class JSONParser(BaseParser):
    """
    Parser for JSON documents.

    Accepts a top-level array, an object with a ``data`` array, or any other
    document, which is treated as a single record.
    """

    format_name = "json"

    def parse(self, content: str | bytes, options: ParseOptions | None = None) -> list[Row]:
        options = options or ParseOptions()
        text = decode_content(content, options.encoding)
        if not text.strip():
            return []

        try:
            document: Any = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid JSON: {exc}") from exc

        if isinstance(document, list):
            rows = list(document)
        elif isinstance(document, dict) and isinstance(document.get("data"), list):
            rows = list(document["data"])
        else:
            rows = [document]

        if options.skip_empty_rows:
            rows = [row for row in rows if row is not None and not is_empty_row(row)]
        return apply_row_window(rows, options)
