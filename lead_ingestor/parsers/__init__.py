"""Parser registry for the bulk import file formats."""

from ..exceptions import UnsupportedFormatError
from ..schemas.imports import ParseOptions
from .base import BaseParser, Row, decode_content
from .delimited import DelimitedTextParser
from .json_parser import JSONParser
from .markup import MarkupParser
from .spreadsheet import SpreadsheetArchiveParser

# Parser registry - register new formats here
_PARSER_REGISTRY: dict[str, type[BaseParser]] = {}


def register_parser(name: str, parser_class: type[BaseParser]) -> None:
    """
    Register a parser class for a file format.

    Args:
        name: Format identifier (e.g. ``csv``)
        parser_class: Parser class to register
    """
    _PARSER_REGISTRY[name.lower()] = parser_class


def get_parser(name: str) -> BaseParser:
    """
    Get a parser instance for a file format.

    Args:
        name: Format identifier

    Returns:
        Parser instance

    Raises:
        UnsupportedFormatError: If no parser is registered for the format
    """
    key = str(getattr(name, "value", name)).lower()
    if key not in _PARSER_REGISTRY:
        available = sorted(_PARSER_REGISTRY.keys())
        available_display = ", ".join(available) if available else "none"
        raise UnsupportedFormatError(
            f"Unsupported format: {name}. Available formats: {available_display}."
        )
    return _PARSER_REGISTRY[key]()


def list_parsers() -> list[str]:
    """Return list of registered format names."""
    return list(_PARSER_REGISTRY.keys())


def parse_content(
    format_name: str, content: str | bytes, options: ParseOptions | None = None
) -> list[Row]:
    """Parse ``content`` with the parser registered for ``format_name``."""

    return get_parser(format_name).parse(content, options)


register_parser("csv", DelimitedTextParser)
register_parser("json", JSONParser)
register_parser("xlsx", SpreadsheetArchiveParser)
register_parser("xml", MarkupParser)

__all__ = [
    "BaseParser",
    "DelimitedTextParser",
    "JSONParser",
    "MarkupParser",
    "Row",
    "SpreadsheetArchiveParser",
    "decode_content",
    "get_parser",
    "list_parsers",
    "parse_content",
    "register_parser",
]
