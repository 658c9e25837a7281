"""Tests for the XLSX spreadsheet archive parser."""

from __future__ import annotations

import io
import struct
import zipfile

import pytest

from lead_ingestor.exceptions import ParseError, UnsupportedCompressionError
from lead_ingestor.parsers import SpreadsheetArchiveParser, get_parser
from lead_ingestor.parsers.spreadsheet import ArchiveReader, column_index
from lead_ingestor.schemas.imports import ParseOptions

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"

WORKBOOK = (
    f'<workbook xmlns="{MAIN_NS}" xmlns:r="{REL_NS}"><sheets>'
    '<sheet name="Leads" sheetId="1" r:id="rId1"/>'
    '<sheet name="Other" sheetId="2" r:id="rId2"/>'
    "</sheets></workbook>"
)

WORKBOOK_RELS = (
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    '<Relationship Id="rId1" Type="worksheet" Target="worksheets/sheet2.xml"/>'
    '<Relationship Id="rId2" Type="worksheet" Target="worksheets/sheet1.xml"/>'
    "</Relationships>"
)

SHARED_STRINGS = (
    f'<sst xmlns="{MAIN_NS}">'
    "<si><t>name</t></si>"
    "<si><t>city</t></si>"
    '<si><r><t>Ada</t></r><r><t xml:space="preserve"> L.</t></r></si>'
    "<si><t>London</t><rPh sb=\"0\" eb=\"1\"><t>RONDON</t></rPh></si>"
    "</sst>"
)

LEADS_SHEET = (
    f'<worksheet xmlns="{MAIN_NS}"><sheetData>'
    '<row r="1">'
    '<c r="A1" t="s"><v>0</v></c>'
    '<c r="B1" t="s"><v>1</v></c>'
    '<c r="C1" t="inlineStr"><is><t>age</t></is></c>'
    '<c r="D1" t="inlineStr"><is><t>active</t></is></c>'
    "</row>"
    '<row r="2">'
    '<c r="A2" t="s"><v>2</v></c>'
    '<c r="B2" t="s"><v>3</v></c>'
    '<c r="C2"><v>36</v></c>'
    '<c r="D2" t="b"><v>1</v></c>'
    "</row>"
    '<row r="3">'
    '<c r="A3" t="inlineStr"><is><t>Bob</t></is></c>'
    '<c r="C3"><v>4.5</v></c>'
    "</row>"
    "</sheetData></worksheet>"
)

OTHER_SHEET = (
    f'<worksheet xmlns="{MAIN_NS}"><sheetData>'
    '<row r="1"><c r="A1" t="inlineStr"><is><t>code</t></is></c></row>'
    '<row r="2"><c r="A2" t="str"><v>X-1</v></c></row>'
    "</sheetData></worksheet>"
)

EXPECTED_LEADS = [
    {"name": "Ada L.", "city": "London", "age": 36, "active": True},
    {"name": "Bob", "city": None, "age": 4.5, "active": None},
]


def _workbook_parts() -> dict[str, str]:
    return {
        "xl/workbook.xml": WORKBOOK,
        "xl/_rels/workbook.xml.rels": WORKBOOK_RELS,
        "xl/sharedStrings.xml": SHARED_STRINGS,
        "xl/worksheets/sheet1.xml": OTHER_SHEET,
        "xl/worksheets/sheet2.xml": LEADS_SHEET,
    }


def _build_archive(parts: dict[str, str], compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        for name, text in parts.items():
            archive.writestr(name, text)
    return buffer.getvalue()


class _UnseekableBuffer:
    """Write-only stream; zipfile falls back to data descriptors for it."""

    def __init__(self) -> None:
        self.buffer = io.BytesIO()

    def write(self, data: bytes) -> int:
        return self.buffer.write(data)

    def flush(self) -> None:
        pass


@pytest.fixture
def parser() -> SpreadsheetArchiveParser:
    return SpreadsheetArchiveParser()


class TestColumnIndex:
    def test_letters(self):
        assert column_index("A") == 0
        assert column_index("Z") == 25
        assert column_index("AA") == 26
        assert column_index("ab") == 27

    def test_invalid_letters(self):
        with pytest.raises(ValueError):
            column_index("A1")


class TestSpreadsheetArchiveParser:
    """Test suite for SpreadsheetArchiveParser."""

    @pytest.mark.parametrize("compression", [zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED])
    def test_first_sheet_from_workbook(self, parser: SpreadsheetArchiveParser, compression):
        content = _build_archive(_workbook_parts(), compression)
        assert parser.parse(content) == EXPECTED_LEADS

    def test_sheet_by_name(self, parser: SpreadsheetArchiveParser):
        content = _build_archive(_workbook_parts())
        rows = parser.parse(content, ParseOptions(sheet_name="Other"))
        assert rows == [{"code": "X-1"}]

    def test_unknown_sheet_lists_available_sheets(self, parser: SpreadsheetArchiveParser):
        content = _build_archive(_workbook_parts())
        with pytest.raises(ParseError, match="Available sheets: Leads, Other"):
            parser.parse(content, ParseOptions(sheet_name="Missing"))

    def test_without_header(self, parser: SpreadsheetArchiveParser):
        content = _build_archive(_workbook_parts())
        rows = parser.parse(content, ParseOptions(has_header=False))

        assert rows[0] == {
            "column_1": "name",
            "column_2": "city",
            "column_3": "age",
            "column_4": "active",
        }
        assert len(rows) == 3

    def test_row_window(self, parser: SpreadsheetArchiveParser):
        content = _build_archive(_workbook_parts())
        rows = parser.parse(content, ParseOptions(start_row=1, max_rows=5))
        assert rows == EXPECTED_LEADS[1:]

    def test_falls_back_to_lowest_numbered_worksheet(self, parser: SpreadsheetArchiveParser):
        content = _build_archive(
            {
                "xl/worksheets/sheet10.xml": OTHER_SHEET,
                "xl/worksheets/sheet3.xml": LEADS_SHEET.replace('t="s"', 't="str"'),
            }
        )
        rows = parser.parse(content)
        # Without shared strings the string cells hold their raw index values.
        assert rows[0]["0"] == "2"

    def test_data_descriptor_entries(self, parser: SpreadsheetArchiveParser):
        stream = _UnseekableBuffer()
        with zipfile.ZipFile(stream, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, text in _workbook_parts().items():
                archive.writestr(name, text)
        content = stream.buffer.getvalue()

        # Bit 3 set: sizes live in the central directory.
        assert struct.unpack_from("<H", content, 6)[0] & 0x08
        assert parser.parse(content) == EXPECTED_LEADS

    def test_unsupported_compression_method(self, parser: SpreadsheetArchiveParser):
        content = bytearray(
            _build_archive({"xl/worksheets/sheet1.xml": OTHER_SHEET}, zipfile.ZIP_STORED)
        )
        # Compression method lives at offset 8 of the local file header; 12 is bzip2.
        content[8:10] = struct.pack("<H", 12)

        with pytest.raises(UnsupportedCompressionError) as excinfo:
            parser.parse(bytes(content))
        assert excinfo.value.method == 12
        assert excinfo.value.entry_name == "xl/worksheets/sheet1.xml"

    def test_corrupt_deflate_stream(self):
        # 0x07 opens a final block of the reserved block type 3.
        content = bytearray(
            _build_archive({"xl/worksheets/sheet1.xml": "\x07not deflate"}, zipfile.ZIP_STORED)
        )
        content[8:10] = struct.pack("<H", 8)

        with pytest.raises(ParseError, match="corrupt"):
            ArchiveReader(bytes(content)).read("xl/worksheets/sheet1.xml")

    def test_not_an_archive(self, parser: SpreadsheetArchiveParser):
        with pytest.raises(ParseError, match="missing ZIP signature"):
            parser.parse(b"name,email\n")

    def test_text_content_is_rejected(self, parser: SpreadsheetArchiveParser):
        with pytest.raises(ParseError, match="must be supplied as bytes"):
            parser.parse("PK")

    def test_empty_content(self, parser: SpreadsheetArchiveParser):
        assert parser.parse(b"") == []

    def test_registered_as_xlsx(self):
        assert isinstance(get_parser("xlsx"), SpreadsheetArchiveParser)
