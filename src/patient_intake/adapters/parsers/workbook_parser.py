"""Spreadsheet Workbook Parser Adapter.

This adapter implements TableParserPort for ``.xlsx``-style workbooks using
openpyxl. Only the first worksheet is read. Headers come from the literal
first row and are applied positionally to every later row, so blank or
repeated header cells never shift data between columns.

Security Impact:
    - Workbooks are opened read-only with formulas resolved to cached values;
      external links are not followed
    - Unreadable archives raise ParseError instead of leaking library errors

Architecture:
    - Implements TableParserPort (Hexagonal Architecture)
    - Numeric and date cells keep their native Python types, which the value
      transformer needs to recognise date serials and time fractions
"""

import io
import logging
import zipfile
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from patient_intake.adapters.parsers.headers import dedupe_headers
from patient_intake.domain.models import ParsedTable
from patient_intake.domain.ports import ParseError, TableParserPort
from patient_intake.domain.utils import is_blank

logger = logging.getLogger(__name__)


def _clean_cell(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class WorkbookTableParser(TableParserPort):
    """Reads the first worksheet of a workbook into a ParsedTable."""

    extensions = (".xlsx", ".xlsm", ".xltx", ".xltm")

    def can_parse(self, filename: str) -> bool:
        # Anything that is not delimited text is treated as a workbook
        return bool(filename)

    def parse(self, content: bytes, filename: str) -> ParsedTable:
        if not content:
            raise ParseError(f"File {filename} is empty", source=filename)

        try:
            workbook = openpyxl.load_workbook(
                io.BytesIO(content),
                read_only=True,
                data_only=True,
                keep_links=False,
            )
        except (zipfile.BadZipFile, InvalidFileException, KeyError, OSError) as e:
            raise ParseError(
                f"File {filename} is not a readable spreadsheet workbook: {e}",
                source=filename,
            ) from e

        try:
            if not workbook.worksheets:
                raise ParseError(f"Workbook {filename} contains no worksheet", source=filename)
            sheet = workbook.worksheets[0]
            values = [tuple(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

        if not values:
            raise ParseError(f"Worksheet in {filename} is empty", source=filename)

        header_cells = list(values[0])
        while header_cells and is_blank(header_cells[-1]):
            header_cells.pop()
        if not header_cells:
            raise ParseError(f"Worksheet in {filename} has no header row", source=filename)
        headers = dedupe_headers(header_cells)

        rows = []
        for raw_row in values[1:]:
            cells = [_clean_cell(v) for v in raw_row[: len(headers)]]
            cells.extend([None] * (len(headers) - len(cells)))
            if all(is_blank(v) for v in cells):
                continue
            rows.append(dict(zip(headers, cells)))

        if not rows:
            raise ParseError(f"File {filename} contains no data rows", source=filename)

        logger.info(f"Parsed workbook {filename} (sheet '{sheet.title}'): {len(rows)} rows")
        return ParsedTable(headers=headers, rows=rows)
