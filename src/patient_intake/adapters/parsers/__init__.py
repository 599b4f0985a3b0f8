"""File parsers for roster uploads.

This module contains the TableParserPort implementations for delimited text
and spreadsheet workbooks, and the factory choosing between them.
"""

import logging
from pathlib import Path

from patient_intake.adapters.parsers.csv_parser import CSVTableParser
from patient_intake.adapters.parsers.workbook_parser import WorkbookTableParser
from patient_intake.domain.ports import TableParserPort

__all__ = ["CSVTableParser", "WorkbookTableParser", "get_parser"]

logger = logging.getLogger(__name__)


def get_parser(filename: str) -> TableParserPort:
    """Pick the parser for an upload based on its file extension.

    ``.csv``, ``.tsv`` and ``.txt`` files are parsed as delimited text; every
    other name is handed to the workbook parser, which reports a ParseError
    if the content is not a workbook.

    Example Usage:
        ```python
        parser = get_parser("roster.xlsx")
        table = parser.parse(raw_bytes, "roster.xlsx")
        ```
    """
    delimited = CSVTableParser()
    if delimited.can_parse(filename):
        return delimited

    extension = Path(filename or "").suffix.lower()
    if extension and extension not in WorkbookTableParser.extensions:
        logger.debug(f"No dedicated parser for {extension!r}; trying it as a workbook")
    return WorkbookTableParser()
