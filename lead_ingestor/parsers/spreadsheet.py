"""Spreadsheet archive (XLSX) parser.

An XLSX workbook is a ZIP container of XML parts. The container is walked by
hand over its local file headers; entries are either stored or DEFLATE
compressed (inflated with :mod:`zlib`). Any other compression method is
reported as :class:`UnsupportedCompressionError` instead of returning a
partial result.
"""

from __future__ import annotations

import posixpath
import re
import struct
import zlib
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup, Tag

from ..exceptions import ParseError, UnsupportedCompressionError
from ..schemas.imports import ParseOptions
from .base import BaseParser, Row, apply_row_window, is_empty_row

LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
CENTRAL_HEADER_SIGNATURE = b"PK\x01\x02"
END_OF_CENTRAL_DIRECTORY_SIGNATURE = b"PK\x05\x06"
DATA_DESCRIPTOR_SIGNATURE = b"PK\x07\x08"

# signature, version, flags, method, mtime, mdate, crc32, compressed, uncompressed,
# name length, extra length
_LOCAL_HEADER = struct.Struct("<4sHHHHHIIIHH")
# signature, version made by, version needed, flags, method, mtime, mdate, crc32,
# compressed, uncompressed, name length, extra length, comment length, disk,
# internal attrs, external attrs, local header offset
_CENTRAL_HEADER = struct.Struct("<4sHHHHHHIIIHHHHHII")
# signature, disk, central directory disk, entries on disk, total entries,
# central directory size, central directory offset, comment length
_END_OF_CENTRAL_DIRECTORY = struct.Struct("<4sHHHHIIH")

METHOD_STORED = 0
METHOD_DEFLATED = 8
FLAG_DATA_DESCRIPTOR = 0x08

_CELL_REFERENCE = re.compile(r"^([A-Za-z]+)(\d+)$")


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    method: int
    flags: int
    data_offset: int
    compressed_size: int
    uncompressed_size: int


def column_index(letters: str) -> int:
    """Convert spreadsheet column letters to a zero-based index (``A`` = 0)."""

    index = 0
    for char in letters.upper():
        if not "A" <= char <= "Z":
            raise ValueError(f"Invalid column letters: {letters}")
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


class ArchiveReader:
    """Minimal reader over the local file headers of a ZIP container."""

    def __init__(self, data: bytes) -> None:
        if not data.startswith(LOCAL_HEADER_SIGNATURE):
            raise ParseError("Content is not a spreadsheet archive (missing ZIP signature)")
        self._data = data
        self._central_sizes: dict[str, tuple[int, int]] | None = None
        self.entries: dict[str, ArchiveEntry] = self._walk_local_headers()

    def names(self) -> list[str]:
        return list(self.entries)

    def read(self, name: str) -> bytes | None:
        """Return the uncompressed bytes of ``name`` or None when absent."""

        entry = self.entries.get(name)
        if entry is None:
            return None

        end = entry.data_offset + entry.compressed_size
        if end > len(self._data):
            raise ParseError(f"Archive entry '{name}' is truncated")
        payload = self._data[entry.data_offset : end]

        if entry.method == METHOD_STORED:
            return payload
        if entry.method == METHOD_DEFLATED:
            try:
                inflater = zlib.decompressobj(-zlib.MAX_WBITS)
                return inflater.decompress(payload) + inflater.flush()
            except zlib.error as exc:
                raise ParseError(f"Archive entry '{name}' is corrupt: {exc}") from exc
        raise UnsupportedCompressionError(name, entry.method)

    def read_text(self, name: str) -> str | None:
        payload = self.read(name)
        if payload is None:
            return None
        return payload.decode("utf-8", errors="replace")

    def _walk_local_headers(self) -> dict[str, ArchiveEntry]:
        data = self._data
        entries: dict[str, ArchiveEntry] = {}
        offset = 0

        while data.startswith(LOCAL_HEADER_SIGNATURE, offset):
            if offset + _LOCAL_HEADER.size > len(data):
                raise ParseError("Archive local file header is truncated")
            (
                _signature,
                _version,
                flags,
                method,
                _mtime,
                _mdate,
                _crc,
                compressed_size,
                uncompressed_size,
                name_length,
                extra_length,
            ) = _LOCAL_HEADER.unpack_from(data, offset)

            name_start = offset + _LOCAL_HEADER.size
            name = data[name_start : name_start + name_length].decode("utf-8", errors="replace")
            data_offset = name_start + name_length + extra_length

            uses_descriptor = bool(flags & FLAG_DATA_DESCRIPTOR)
            if uses_descriptor and compressed_size == 0:
                compressed_size, uncompressed_size = self._sizes_from_central_directory(name)

            entries[name] = ArchiveEntry(
                name=name,
                method=method,
                flags=flags,
                data_offset=data_offset,
                compressed_size=compressed_size,
                uncompressed_size=uncompressed_size,
            )

            offset = data_offset + compressed_size
            if uses_descriptor:
                if data.startswith(DATA_DESCRIPTOR_SIGNATURE, offset):
                    offset += 4
                offset += 12

        if not entries:
            raise ParseError("Spreadsheet archive contains no entries")
        return entries

    def _sizes_from_central_directory(self, name: str) -> tuple[int, int]:
        if self._central_sizes is None:
            self._central_sizes = self._read_central_directory()
        try:
            return self._central_sizes[name]
        except KeyError:
            raise ParseError(
                f"Archive entry '{name}' has no size information in the central directory"
            ) from None

    def _read_central_directory(self) -> dict[str, tuple[int, int]]:
        data = self._data
        eocd_offset = data.rfind(END_OF_CENTRAL_DIRECTORY_SIGNATURE)
        if eocd_offset < 0 or eocd_offset + _END_OF_CENTRAL_DIRECTORY.size > len(data):
            raise ParseError("Spreadsheet archive has no end of central directory record")

        fields = _END_OF_CENTRAL_DIRECTORY.unpack_from(data, eocd_offset)
        total_entries, directory_offset = fields[4], fields[6]

        sizes: dict[str, tuple[int, int]] = {}
        offset = directory_offset
        for _ in range(total_entries):
            if not data.startswith(CENTRAL_HEADER_SIGNATURE, offset):
                raise ParseError("Spreadsheet archive central directory is corrupt")
            header = _CENTRAL_HEADER.unpack_from(data, offset)
            compressed_size, uncompressed_size = header[8], header[9]
            name_length, extra_length, comment_length = header[10], header[11], header[12]
            name_start = offset + _CENTRAL_HEADER.size
            name = data[name_start : name_start + name_length].decode("utf-8", errors="replace")
            sizes[name] = (compressed_size, uncompressed_size)
            offset = name_start + name_length + extra_length + comment_length
        return sizes


def _xml(text: str) -> BeautifulSoup:
    return BeautifulSoup(text, "xml")


def _coerce_number(text: str) -> int | float | str:
    try:
        number = float(text)
    except ValueError:
        return text
    if number.is_integer() and re.fullmatch(r"-?\d+", text.strip()):
        return int(text)
    return number


class SpreadsheetArchiveParser(BaseParser):
    """Parser for XLSX workbooks: the first sheet, or ``sheet_name`` when given."""

    format_name = "xlsx"

    def parse(self, content: str | bytes, options: ParseOptions | None = None) -> list[Row]:
        options = options or ParseOptions()
        if isinstance(content, str):
            raise ParseError("Spreadsheet archives must be supplied as bytes")
        if not content:
            return []

        archive = ArchiveReader(content)
        shared_strings = self._shared_strings(archive)
        sheet_path = self._resolve_sheet_path(archive, options.sheet_name)
        sheet_xml = archive.read_text(sheet_path)
        if sheet_xml is None:
            raise ParseError(f"Worksheet part '{sheet_path}' is missing from the archive")

        grid = self._read_grid(_xml(sheet_xml), shared_strings)
        rows = self._build_rows(grid, options.has_header)
        if options.skip_empty_rows:
            rows = [row for row in rows if not is_empty_row(row)]
        return apply_row_window(rows, options)

    def _shared_strings(self, archive: ArchiveReader) -> list[str]:
        text = archive.read_text("xl/sharedStrings.xml")
        if text is None:
            return []
        strings: list[str] = []
        for item in _xml(text).find_all("si"):
            # Phonetic runs (rPh) carry their own <t> elements; skip them.
            parts = [
                node.get_text()
                for node in item.find_all("t")
                if node.find_parent("rPh") is None
            ]
            strings.append("".join(parts))
        return strings

    def _resolve_sheet_path(self, archive: ArchiveReader, sheet_name: str | None) -> str:
        workbook_xml = archive.read_text("xl/workbook.xml")
        rels_xml = archive.read_text("xl/_rels/workbook.xml.rels")

        if workbook_xml is not None and rels_xml is not None:
            sheets = _xml(workbook_xml).find_all("sheet")
            targets = {
                rel.get("Id"): rel.get("Target")
                for rel in _xml(rels_xml).find_all("Relationship")
            }
            if sheet_name is not None:
                sheets = [sheet for sheet in sheets if sheet.get("name") == sheet_name]
                if not sheets:
                    available = ", ".join(
                        sheet.get("name", "") for sheet in _xml(workbook_xml).find_all("sheet")
                    )
                    raise ParseError(
                        f"Sheet '{sheet_name}' not found. Available sheets: {available or 'none'}"
                    )
            for sheet in sheets:
                target = targets.get(sheet.get("r:id") or sheet.get("id"))
                if target:
                    return self._part_path(target)

        if sheet_name is not None:
            raise ParseError(f"Sheet '{sheet_name}' not found (workbook index is missing)")

        worksheets = sorted(
            (name for name in archive.names() if re.fullmatch(r"xl/worksheets/sheet\d+\.xml", name)),
            key=lambda name: int(re.findall(r"\d+", name)[-1]),
        )
        if not worksheets:
            raise ParseError("Spreadsheet archive contains no worksheets")
        return worksheets[0]

    @staticmethod
    def _part_path(target: str) -> str:
        if target.startswith("/"):
            return target.lstrip("/")
        return posixpath.normpath(posixpath.join("xl", target))

    def _read_grid(
        self, sheet: BeautifulSoup, shared_strings: list[str]
    ) -> list[dict[int, Any]]:
        grid: list[dict[int, Any]] = []
        for row in sheet.find_all("row"):
            cells: dict[int, Any] = {}
            next_column = 0
            for cell in row.find_all("c", recursive=False):
                column = next_column
                reference = cell.get("r")
                if reference:
                    match = _CELL_REFERENCE.match(reference)
                    if match:
                        column = column_index(match.group(1))
                cells[column] = self._cell_value(cell, shared_strings)
                next_column = column + 1
            grid.append(cells)
        return grid

    def _cell_value(self, cell: Tag, shared_strings: list[str]) -> Any:
        cell_type = cell.get("t", "n")

        if cell_type == "inlineStr":
            inline = cell.find("is")
            if inline is None:
                return None
            return "".join(node.get_text() for node in inline.find_all("t"))

        value_node = cell.find("v")
        if value_node is None:
            return None
        raw = value_node.get_text()

        if cell_type == "s":
            try:
                return shared_strings[int(raw)]
            except (ValueError, IndexError):
                raise ParseError(f"Invalid shared string index '{raw}' in cell {cell.get('r')}")
        if cell_type == "b":
            return raw.strip() == "1"
        if cell_type in {"str", "e"}:
            return raw
        if raw.strip() == "":
            return None
        return _coerce_number(raw.strip())

    def _build_rows(self, grid: list[dict[int, Any]], has_header: bool) -> list[Row]:
        if not grid:
            return []

        width = max((max(cells) + 1 for cells in grid if cells), default=0)
        if has_header:
            header_cells = grid[0]
            data_rows = grid[1:]
            headers = []
            for index in range(width):
                value = header_cells.get(index)
                label = str(value).strip() if value is not None else ""
                headers.append(label or f"column_{index + 1}")
        else:
            data_rows = grid
            headers = [f"column_{index + 1}" for index in range(width)]

        return [
            {header: cells.get(index) for index, header in enumerate(headers)}
            for cells in data_rows
        ]
