"""Field Extraction Service.

Applies column matching and value transformation across a list of field
definitions for one row.

Security Impact:
    - Diagnostics name fields and headers only; cell values never appear in
      events or log messages

Architecture:
    - Pure domain service; collaborators (matcher, transformer) are injected
    - Returns diagnostics alongside the extracted data instead of logging them,
      so callers can merge them deterministically in row order
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from patient_intake.domain.enums import DiagnosticLevel, TransformKind
from patient_intake.domain.models import DiagnosticEvent, FieldDefinition
from patient_intake.domain.services.column_matcher import ColumnMatcher
from patient_intake.domain.services.value_transformer import ValueTransformer
from patient_intake.domain.utils import (
    DOB_KEYS,
    FIRST_NAME_KEYS,
    LAST_NAME_KEYS,
    PHONE_KEYS,
    cell_to_text,
    is_blank,
)

logger = logging.getLogger(__name__)

# Fewer extracted fields than this signals a badly matched configuration
MIN_EXTRACTED_FIELDS = 2


@dataclass(frozen=True)
class CoreHint:
    """Keyword hints used to recover a core identity field."""

    key: str
    keywords: tuple[str, ...]
    transform: TransformKind
    aliases: tuple[str, ...]


CORE_HINTS = (
    CoreHint("firstName", ("first", "fname"), TransformKind.TEXT, FIRST_NAME_KEYS),
    CoreHint("lastName", ("last", "lname"), TransformKind.TEXT, LAST_NAME_KEYS),
    CoreHint("primaryPhone", ("phone", "mobile", "cell"), TransformKind.PHONE, PHONE_KEYS),
    CoreHint("dob", ("dob", "birth"), TransformKind.SHORT_DATE, DOB_KEYS),
)


@dataclass
class ExtractionResult:
    """Outcome of extracting one field list from one row.

    Attributes:
        extracted_data: Field key to transformed value (None for blank cells)
        column_mappings: Field key to the header it was read from
        missing_required: Labels of required fields with no matching column
        diagnostics: Events raised while extracting
    """

    extracted_data: dict[str, Any] = field(default_factory=dict)
    column_mappings: dict[str, str] = field(default_factory=dict)
    missing_required: list[str] = field(default_factory=list)
    diagnostics: list[DiagnosticEvent] = field(default_factory=list)

    @property
    def populated_count(self) -> int:
        return sum(1 for value in self.extracted_data.values() if value is not None)


class FieldExtractor:
    """Extracts configured fields from a raw row."""

    def __init__(self, matcher: ColumnMatcher, transformer: ValueTransformer):
        self.matcher = matcher
        self.transformer = transformer

    def extract(
        self,
        row: Mapping[str, Any],
        headers: Sequence[str],
        fields: Sequence[FieldDefinition],
        enforce_required: bool = True,
        row_index: Optional[int] = None,
        recover_core: bool = False,
    ) -> ExtractionResult:
        """Extract ``fields`` from ``row``.

        Parameters:
            row: Raw header-to-cell map
            headers: File headers in column order
            fields: Field definitions to extract
            enforce_required: Record missing required fields; False is used
                for diagnostic re-extraction of rows already deemed invalid
            row_index: Row index (header is row 1), attached to diagnostics
            recover_core: Fill missing core identity fields from header keywords
                when fewer than two fields were populated; only meaningful for
                the patient field list

        Returns:
            ExtractionResult
        """
        result = ExtractionResult()

        for definition in fields:
            header = self.matcher.find_column(headers, definition.possible_columns)
            if header is None:
                if definition.required and enforce_required:
                    result.missing_required.append(definition.label)
                continue

            result.column_mappings[definition.key] = header
            result.extracted_data[definition.key] = self._read_cell(
                row.get(header), definition, header, result, row_index
            )

        if recover_core and fields and result.populated_count < MIN_EXTRACTED_FIELDS:
            self._recover_core_fields(row, headers, fields, result, row_index)

        return result

    def _read_cell(
        self,
        raw: Any,
        definition: FieldDefinition,
        header: str,
        result: ExtractionResult,
        row_index: Optional[int],
    ) -> Any:
        if is_blank(raw):
            return None
        if definition.referenced_table:
            return raw

        try:
            return self.transformer.convert(raw, definition.transform)
        except Exception as e:
            logger.warning(
                f"Transform '{definition.transform.value}' failed for field "
                f"'{definition.key}' at row {row_index}: {type(e).__name__}"
            )
            result.diagnostics.append(
                DiagnosticEvent(
                    level=DiagnosticLevel.WARNING,
                    code="transform_failed",
                    message=f"Kept raw value for field '{definition.key}' after transform error",
                    row_index=row_index,
                    details={"field": definition.key, "header": header, "error": type(e).__name__},
                )
            )
            return cell_to_text(raw)

    def _recover_core_fields(
        self,
        row: Mapping[str, Any],
        headers: Sequence[str],
        fields: Sequence[FieldDefinition],
        result: ExtractionResult,
        row_index: Optional[int],
    ) -> None:
        """Fill missing core identity fields from single-keyword header hints."""
        used_headers = set(result.column_mappings.values())

        for hint in CORE_HINTS:
            definition = next((f for f in fields if f.key in hint.aliases), None)
            key = definition.key if definition else hint.key
            if result.extracted_data.get(key) is not None:
                continue

            found = self.matcher.match_keyword(headers, hint.keywords, exclude=used_headers)
            if found is None:
                continue

            raw = row.get(found.header)
            value = self.transformer.transform(raw, definition.transform if definition else hint.transform)
            if value is None:
                continue

            used_headers.add(found.header)
            result.extracted_data[key] = value
            result.column_mappings[key] = found.header
            if definition and definition.label in result.missing_required:
                result.missing_required.remove(definition.label)

            result.diagnostics.append(
                DiagnosticEvent(
                    level=DiagnosticLevel.INFO,
                    code="keyword_fallback",
                    message=f"Recovered '{key}' from header '{found.header}' by keyword",
                    row_index=row_index,
                    details={"field": key, "header": found.header, "keyword": found.candidate},
                )
            )
