"""Delimited text (CSV) parser built on pandas."""

from __future__ import annotations

import csv
import io
import re
from typing import Any

import pandas as pd

from ..exceptions import ParseError
from ..schemas.imports import ParseOptions
from .base import BaseParser, Row, apply_row_window, decode_content, is_empty_row


def _clean(value: Any) -> str | None:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


class DelimitedTextParser(BaseParser):
    """Parser for delimited text files; every value is read as a string."""

    format_name = "csv"

    def parse(self, content: str | bytes, options: ParseOptions | None = None) -> list[Row]:
        options = options or ParseOptions()
        text = decode_content(content, options.encoding)
        if not text.strip():
            return []

        frame = self._read_frame(text, options)

        if not options.has_header:
            frame.columns = [f"column_{index + 1}" for index in range(len(frame.columns))]
        else:
            frame.columns = [str(column).strip() for column in frame.columns]

        rows: list[Row] = [
            {column: _clean(value) for column, value in record.items()}
            for record in frame.to_dict(orient="records")
        ]
        if options.skip_empty_rows:
            rows = [row for row in rows if not is_empty_row(row)]
        return apply_row_window(rows, options)

    def _read_frame(self, text: str, options: ParseOptions) -> pd.DataFrame:
        csv_options: dict[str, Any] = {
            "header": 0 if options.has_header else None,
            "dtype": str,
            "keep_default_na": False,
            "skip_blank_lines": True,
            "skipinitialspace": True,
            "index_col": False,
            "quotechar": '"',
            "doublequote": True,
            "quoting": csv.QUOTE_MINIMAL,
        }
        if len(options.delimiter) == 1:
            csv_options["sep"] = options.delimiter
        else:
            # Multi-character separators are regexes in pandas.
            csv_options["sep"] = re.escape(options.delimiter)
            csv_options["engine"] = "python"

        try:
            return pd.read_csv(io.StringIO(text), **csv_options)
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except (pd.errors.ParserError, ValueError) as exc:
            raise ParseError(f"Failed to parse delimited text: {exc}") from exc
