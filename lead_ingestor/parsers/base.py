"""Base parser abstract class for all bulk import file formats."""

from __future__ import annotations

import asyncio
import codecs
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ParseError
from ..schemas.imports import ParseOptions

Row = dict[str, Any]


def decode_content(content: str | bytes, encoding: str = "utf-8") -> str:
    """
    Turn uploaded bytes into text for text-based formats.

    A leading byte-order mark is dropped.

    Raises:
        ParseError: If the bytes are not valid in ``encoding``
    """
    if isinstance(content, str):
        return content.lstrip("\ufeff")

    try:
        codecs.lookup(encoding)
    except LookupError as exc:
        raise ParseError(f"Unknown encoding: {encoding}") from exc

    try:
        text = content.decode(encoding)
    except UnicodeDecodeError as exc:
        raise ParseError(f"Content is not valid {encoding}: {exc}") from exc
    return text.lstrip("\ufeff")


def apply_row_window(rows: list[Any], options: ParseOptions) -> list[Any]:
    """Slice data rows by ``start_row`` and ``max_rows``."""

    start = options.start_row
    if options.max_rows is None:
        return rows[start:]
    return rows[start : start + options.max_rows]


def is_empty_row(row: Any) -> bool:
    if isinstance(row, dict):
        return all(value is None or value == "" for value in row.values())
    return False


class BaseParser(ABC):
    """
    Abstract base class for all format parsers.

    Parsers are stateless and synchronous: ``parse`` converts a whole file into
    an ordered list of rows. Use ``parse_async`` from coroutines so large files
    are parsed off the event loop.
    """

    format_name: str = "unknown"

    @abstractmethod
    def parse(self, content: str | bytes, options: ParseOptions | None = None) -> list[Row]:
        """
        Parse file content into rows.

        Args:
            content: Raw file content
            options: Parse options (defaults apply when omitted)

        Returns:
            Rows in file order

        Raises:
            ParseError: If the content cannot be parsed
        """
        pass

    async def parse_async(
        self, content: str | bytes, options: ParseOptions | None = None
    ) -> list[Row]:
        return await asyncio.to_thread(self.parse, content, options)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(format={self.format_name!r})"
