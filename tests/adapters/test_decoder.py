"""Tests for the upload decoder and the file parsers.

Tests cover:
- Bytes, text and base64 data URI uploads
- Delimiter detection (comma, tab, semicolon) and BOM handling
- Blank and repeated header cells
- Workbooks with native cell types
- Fatal parse errors: empty files, header-only files, malformed content,
  oversized uploads

Security Impact:
    - Verifies that malformed uploads are rejected with ParseError instead
      of being half-parsed
"""

import base64
from datetime import datetime

import pytest

from patient_intake.adapters.decoder import FileDecoder
from patient_intake.adapters.parsers import CSVTableParser, WorkbookTableParser, get_parser
from patient_intake.adapters.parsers.headers import dedupe_headers
from patient_intake.domain.ports import ParseError

ROSTER = "First Name,Last Name,DOB,Phone\nAnn,Lee,01/02/1980,555-123-4567\nBob,Ray,03/04/1975,5559876543\n"


@pytest.fixture
def decoder():
    return FileDecoder()


class TestDecode:
    """Test content normalization."""

    def test_bytes_upload(self, decoder):
        """Test parsing raw CSV bytes."""
        table = decoder.parse(ROSTER.encode("utf-8"), "roster.csv")

        assert table.headers == ("First Name", "Last Name", "DOB", "Phone")
        assert len(table) == 2
        assert table.rows[0]["First Name"] == "Ann"
        assert table.rows[1]["Phone"] == "5559876543"

    def test_text_upload(self, decoder):
        """Test parsing CSV passed as a string."""
        table = decoder.parse(ROSTER, "roster.csv")

        assert len(table) == 2

    def test_data_uri_upload(self, decoder):
        """Test parsing a browser-style base64 data URI."""
        encoded = base64.b64encode(ROSTER.encode("utf-8")).decode("ascii")

        table = decoder.parse(f"data:text/csv;base64,{encoded}", "roster.csv")
        assert table.rows[0]["Last Name"] == "Lee"

        table = decoder.parse(f"data:text/csv;base64,{encoded}".encode("ascii"), "roster.csv")
        assert table.rows[0]["Last Name"] == "Lee"

    def test_invalid_base64(self, decoder):
        """Test that undecodable data URIs raise ParseError."""
        with pytest.raises(ParseError):
            decoder.parse("data:text/csv;base64,abc", "roster.csv")

    def test_empty_content(self, decoder):
        """Test that empty uploads raise ParseError."""
        with pytest.raises(ParseError, match="empty"):
            decoder.parse(b"", "roster.csv")
        with pytest.raises(ParseError, match="empty"):
            decoder.parse("  \n ", "roster.csv")

    def test_size_limit(self):
        """Test that oversized uploads are rejected."""
        decoder = FileDecoder(max_file_size=10)

        with pytest.raises(ParseError) as exc_info:
            decoder.parse(ROSTER, "roster.csv")

        assert exc_info.value.details["limit"] == 10


class TestDelimitedParsing:
    """Test the delimited text parser."""

    def test_semicolon_delimiter(self, decoder):
        """Test that semicolon-separated files are detected."""
        content = "First Name;Last Name;Phone\nAnn;Lee;5551234567\n"

        table = decoder.parse(content, "roster.csv")

        assert table.headers == ("First Name", "Last Name", "Phone")
        assert table.rows[0]["Phone"] == "5551234567"

    def test_tsv_uses_tab(self, decoder):
        """Test that .tsv files are split on tabs."""
        table = decoder.parse("First Name\tLast Name\nAnn\tLee\n", "roster.tsv")

        assert table.rows[0] == {"First Name": "Ann", "Last Name": "Lee"}

    def test_bom_is_stripped(self, decoder):
        """Test that a UTF-8 byte order mark does not leak into the first header."""
        content = "\ufeffFirst Name,Last Name\nAnn,Lee\n".encode("utf-8")

        table = decoder.parse(content, "roster.csv")

        assert table.headers[0] == "First Name"

    def test_values_are_text_and_trimmed(self, decoder):
        """Test that leading zeros survive and cells are stripped."""
        table = decoder.parse("MRN,Name\n00123 , Ann \n", "roster.csv")

        assert table.rows[0] == {"MRN": "00123", "Name": "Ann"}

    def test_blank_rows_are_skipped(self, decoder):
        """Test that empty lines and rows of empty cells are dropped."""
        table = decoder.parse("A,B\n1,2\n\n,\n3,4\n", "roster.csv")

        assert [row["A"] for row in table.rows] == ["1", "3"]

    def test_short_rows_are_padded(self, decoder):
        """Test that missing trailing cells read as empty strings."""
        table = decoder.parse("A,B,C\n1,2,3\n4\n", "roster.csv")

        assert table.rows[1] == {"A": "4", "B": "", "C": ""}

    def test_blank_and_repeated_headers(self, decoder):
        """Test generated names for blank and duplicate header cells."""
        table = decoder.parse("Name,,Name\na,b,c\n", "roster.csv")

        assert table.headers == ("Name", "Column 2", "Name_2")
        assert table.rows[0] == {"Name": "a", "Column 2": "b", "Name_2": "c"}

    def test_header_only_file(self, decoder):
        """Test that a file without data rows is rejected."""
        with pytest.raises(ParseError, match="no data rows"):
            decoder.parse("First Name,Last Name\n", "roster.csv")

    def test_malformed_rows(self, decoder):
        """Test that rows wider than the header raise ParseError."""
        with pytest.raises(ParseError):
            decoder.parse("A,B\n1,2\n3,4,5\n", "roster.csv")

    def test_detect_delimiter_fallback(self):
        """Test the comma fallback for single-column text."""
        assert CSVTableParser.detect_delimiter("Name\nAnn\n") == ","
        assert CSVTableParser.detect_delimiter("a|b|c\n1|2|3\n") == "|"


class TestWorkbookParsing:
    """Test the workbook parser."""

    def test_native_types_preserved(self, decoder, workbook_bytes):
        """Test that dates and numbers keep their Python types."""
        content = workbook_bytes([
            ["First Name", "DOB", "Phone", "Visit"],
            ["  Ann  ", datetime(1970, 2, 3), 5551234567, 45000],
        ])

        table = decoder.parse(content, "roster.xlsx")

        row = table.rows[0]
        assert row["First Name"] == "Ann"
        assert row["DOB"] == datetime(1970, 2, 3)
        assert row["Phone"] == 5551234567
        assert row["Visit"] == 45000

    def test_blank_and_repeated_headers(self, decoder, workbook_bytes):
        """Test positional header handling in workbooks."""
        content = workbook_bytes([
            ["Name", None, "Name"],
            ["a", "b", "c"],
        ])

        table = decoder.parse(content, "roster.xlsx")

        assert table.headers == ("Name", "Column 2", "Name_2")
        assert table.rows[0]["Column 2"] == "b"

    def test_blank_rows_skipped(self, decoder, workbook_bytes):
        """Test that empty worksheet rows are skipped."""
        content = workbook_bytes([
            ["A", "B"],
            [None, None],
            [1, 2],
        ])

        table = decoder.parse(content, "roster.xlsx")

        assert len(table) == 1
        assert table.rows[0] == {"A": 1, "B": 2}

    def test_header_only_workbook(self, decoder, workbook_bytes):
        """Test that a workbook without data rows is rejected."""
        with pytest.raises(ParseError, match="no data rows"):
            decoder.parse(workbook_bytes([["A", "B"]]), "roster.xlsx")

    def test_not_a_workbook(self, decoder):
        """Test that non-workbook bytes under a workbook name raise ParseError."""
        with pytest.raises(ParseError, match="not a readable spreadsheet workbook"):
            decoder.parse(b"First Name,Last Name\nAnn,Lee\n", "roster.xlsx")


class TestParserSelection:
    """Test parser dispatch and header helpers."""

    @pytest.mark.parametrize("filename", ["a.csv", "a.TSV", "a.txt"])
    def test_delimited_extensions(self, filename):
        """Test that delimited extensions use the CSV parser."""
        assert isinstance(get_parser(filename), CSVTableParser)

    @pytest.mark.parametrize("filename", ["a.xlsx", "a.xls", "upload"])
    def test_other_names_use_workbook_parser(self, filename):
        """Test that every other name goes to the workbook parser."""
        assert isinstance(get_parser(filename), WorkbookTableParser)

    def test_dedupe_headers(self):
        """Test the header dedupe helper directly."""
        assert dedupe_headers(["A", "A", "A_2", None]) == ("A", "A_2", "A_2_2", "Column 4")
