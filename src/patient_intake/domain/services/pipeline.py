"""Ingestion Pipeline - orchestration of one roster upload.

Drives every row of a parsed file through extraction, validation and
identity resolution, and folds the outcomes into an IngestionResult.

Per-row states: pending -> extracting -> validating -> resolving-identity ->
valid | invalid. Every row reaches a terminal state; an exception anywhere in
a row's processing makes that row invalid and never escapes the row.

Processing phases:
    1. Prepare (parallel): extract, validate and hash each row. Pure, so rows
       can run on a bounded worker pool without sharing state
    2. Classify (ordered): mark the first occurrence of each identity hash;
       later rows with the same hash are in-file duplicates
    3. Resolve (parallel): call the patient directory once per distinct hash
    4. Fold (ordered): build ProcessedRows and feed them to the accumulator
       in file order, so samples and counters are reproducible

Security Impact:
    - Raw cell values are kept only on invalid rows, for operator review
    - Log lines reference rows by index and identities by truncated hash

Architecture:
    - Domain service that depends on ports only (decoder, directory,
      phone formatter, date checker); adapters are injected by the caller
    - Cancellation stops scheduling new rows; classified rows are returned
      and the result is flagged as truncated
"""

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from rapidfuzz import fuzz

from patient_intake.domain.accumulator import DEFAULT_SAMPLE_LIMIT, IngestionAccumulator
from patient_intake.domain.enums import DiagnosticLevel, RowState, TransformKind
from patient_intake.domain.models import (
    DiagnosticEvent,
    FieldDefinition,
    IngestionConfig,
    IngestionResult,
    ParsedTable,
    ProcessedRow,
)
from patient_intake.domain.ports import (
    ConfigError,
    DateCheckerPort,
    DirectoryMatch,
    FileDecoderPort,
    IngestionError,
    ParseError,
    PatientDirectoryPort,
    PhoneFormatterPort,
    Result,
    RowError,
    RowExtractionError,
    RowValidationError,
)
from patient_intake.domain.services.column_matcher import ColumnMatcher
from patient_intake.domain.services.field_extractor import FieldExtractor
from patient_intake.domain.services.identity import PatientIdentityResolver
from patient_intake.domain.services.row_validator import RowValidator
from patient_intake.domain.services.value_transformer import ValueTransformer
from patient_intake.domain.utils import normalize_header, short_hash

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
# rapidfuzz score at which an unmatched header counts as a near miss
NEAR_MISS_SCORE = 80

NO_VALID_ROWS_MESSAGE = "No valid rows could be processed from the file"

# Lowercased header patterns that mark a column as patient identity data under auto-mapping
PATIENT_HEADER_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"first.*name",
        r"fname",
        r"last.*name",
        r"lname",
        r"\bdob\b",
        r"birth",
        r"phone",
        r"\bcell\b",
        r"mobile",
    )
)

AUTO_PATIENT_FIELDS = (
    FieldDefinition(
        key="firstName",
        label="First Name",
        possible_columns=("first name", "firstname", "first"),
        required=False,
    ),
    FieldDefinition(
        key="lastName",
        label="Last Name",
        possible_columns=("last name", "lastname", "last"),
        required=False,
    ),
    FieldDefinition(
        key="dob",
        label="Date of Birth",
        possible_columns=("dob", "date of birth", "birth date"),
        transform=TransformKind.SHORT_DATE,
        required=False,
    ),
    FieldDefinition(
        key="primaryPhone",
        label="Phone Number",
        possible_columns=("phone", "phone number", "primaryphone", "primary phone", "mobile", "cell phone"),
        transform=TransformKind.PHONE,
        required=False,
    ),
)


@dataclass
class PreparedRow:
    """Intermediate outcome of the prepare phase for one row."""

    row_index: int
    state: RowState = RowState.PENDING
    patient_data: dict[str, Any] = field(default_factory=dict)
    campaign_data: dict[str, Any] = field(default_factory=dict)
    column_mappings: dict[str, str] = field(default_factory=dict)
    patient_hash: Optional[str] = None
    error: Optional[str] = None
    raw_data: Optional[dict[str, Any]] = None
    diagnostics: list[DiagnosticEvent] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None


class IngestionPipeline:
    """Turns an uploaded roster into classified, de-duplicated rows.

    Parameters:
        decoder: Turns raw uploads into a ParsedTable
        directory: Patient directory used for identity resolution
        phone_formatter: Canonical phone normalization
        date_checker: Plausibility check used by DOB validation
        max_workers: Bound on concurrent row preparation and directory calls
        sample_limit: Preview rows kept per classification
        today: Clock for birth-date heuristics (tests pin it)

    Example:
        ```python
        pipeline = IngestionPipeline(FileDecoder(), InMemoryPatientDirectory(),
                                     E164PhoneFormatter(), DefaultDateChecker())
        result = pipeline.ingest(content, "roster.csv", config, org_id="org_1")
        ```
    """

    def __init__(
        self,
        decoder: FileDecoderPort,
        directory: PatientDirectoryPort,
        phone_formatter: PhoneFormatterPort,
        date_checker: DateCheckerPort,
        max_workers: int = DEFAULT_MAX_WORKERS,
        sample_limit: int = DEFAULT_SAMPLE_LIMIT,
        today: Optional[Callable[[], date]] = None,
    ):
        self.decoder = decoder
        self.max_workers = max(1, max_workers)
        self.sample_limit = sample_limit
        self.matcher = ColumnMatcher()
        self.transformer = ValueTransformer(phone_formatter, today=today)
        self.extractor = FieldExtractor(self.matcher, self.transformer)
        self.validator = RowValidator(date_checker)
        self.resolver = PatientIdentityResolver(directory)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ingest(
        self,
        content: Union[bytes, str],
        filename: str,
        config: Union[IngestionConfig, Mapping[str, Any], None],
        org_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> IngestionResult:
        """Ingest one uploaded file.

        Parameters:
            content: Raw bytes, text, or a base64 data URI
            filename: Original file name; its extension picks the parser
            config: IngestionConfig, or a raw campaign configuration object
            org_id: Organisation owning the patients
            cancel_event: When set, no further rows are scheduled

        Returns:
            IngestionResult covering every row that was processed

        Raises:
            ParseError: If the file cannot be parsed or has no data rows
            ConfigError: If no usable field configuration can be derived
        """
        table = self.decoder.parse(content, filename)
        config, file_events = self._resolve_config(config, table.headers)
        logger.info(
            f"Ingesting '{filename}': {len(table)} rows, {len(table.headers)} columns, "
            f"{len(config.patient_fields)} patient / {len(config.campaign_fields)} campaign fields"
        )

        accumulator = IngestionAccumulator(sample_limit=self.sample_limit)
        accumulator.add_diagnostics(file_events)

        prepared = self._prepare_rows(table, config, cancel_event)
        first_occurrence = self._classify(prepared)
        resolutions = self._resolve_identities(prepared, first_occurrence, org_id)
        self._fold(prepared, first_occurrence, resolutions, config, accumulator)

        truncated = len(prepared) < len(table)
        errors: list[str] = []
        if truncated:
            message = (
                f"Ingestion was cancelled after {len(prepared)} of {len(table)} rows; "
                f"the result is truncated"
            )
            errors.append(message)
            accumulator.add_diagnostics([
                DiagnosticEvent(level=DiagnosticLevel.WARNING, code="cancelled", message=message)
            ])

        stats = accumulator.stats
        if stats.total_rows > 0 and stats.valid_rows == 0:
            errors.append(NO_VALID_ROWS_MESSAGE)

        warnings = self._unmatched_column_warnings(
            accumulator.unmatched_columns(table.headers), config
        )
        accumulator.add_diagnostics(
            DiagnosticEvent(level=DiagnosticLevel.WARNING, code="unmatched_column", message=w)
            for w in warnings
        )

        result = accumulator.build_result(table.headers, errors=errors, warnings=warnings, truncated=truncated)
        logger.info(
            f"Ingestion of '{filename}' finished: {stats.valid_rows} valid, {stats.invalid_rows} invalid, "
            f"{stats.unique_patients} unique, {stats.duplicate_patients} duplicate"
        )
        return result

    def ingest_safely(
        self,
        content: Union[bytes, str],
        filename: str,
        config: Union[IngestionConfig, Mapping[str, Any], None],
        org_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> IngestionResult:
        """Like ``ingest``, but report fatal file/config errors in ``errors``."""
        try:
            return self.ingest(content, filename, config, org_id, cancel_event=cancel_event)
        except (ParseError, ConfigError) as e:
            logger.error(f"Ingestion of '{filename}' failed: {type(e).__name__}: {e}")
            return IngestionResult(
                errors=[str(e)],
                diagnostics=[
                    DiagnosticEvent(
                        level=DiagnosticLevel.ERROR,
                        code=type(e).__name__,
                        message=str(e),
                        details=dict(e.details),
                    )
                ],
            )

    def preview_mappings(
        self,
        headers: Sequence[str],
        config: Union[IngestionConfig, Mapping[str, Any], None],
    ) -> dict[str, dict[str, Optional[str]]]:
        """Resolve every configured field to its header without reading rows.

        Returns:
            ``{"patient": {key: header|None}, "campaign": {key: header|None}}``

        Raises:
            ConfigError: If the configuration is empty and auto-mapping fails
        """
        config, _ = self._resolve_config(config, headers)
        return {
            "patient": {
                f.key: self.matcher.find_column(headers, f.possible_columns) for f in config.patient_fields
            },
            "campaign": {
                f.key: self.matcher.find_column(headers, f.possible_columns) for f in config.campaign_fields
            },
        }

    def auto_config(self, headers: Sequence[str]) -> IngestionConfig:
        """Default mapping for uploads without a field configuration.

        First name, last name, DOB and phone become optional patient fields.
        Every header that neither feeds one of them nor looks like identity
        data becomes a free-text campaign field.

        Raises:
            ConfigError: If none of the patient fields matches a header
        """
        patient_headers = {self.matcher.find_column(headers, f.possible_columns) for f in AUTO_PATIENT_FIELDS}
        patient_headers.discard(None)
        if not patient_headers:
            raise ConfigError(
                "No field configuration was provided and no patient columns "
                "(first name, last name, date of birth, phone) could be found",
                source="auto_mapping",
                details={"headers": list(headers)},
            )

        campaign_fields: list[FieldDefinition] = []
        used_keys: set[str] = set()
        for header in headers:
            if header in patient_headers or self._is_patient_header(header):
                continue
            key = re.sub(r"[^a-z0-9]", "_", header.lower())
            if key in used_keys:
                key = f"{key}_{len(used_keys) + 1}"
            used_keys.add(key)
            campaign_fields.append(FieldDefinition(key=key, label=header, possible_columns=(header,)))

        return IngestionConfig(patient_fields=list(AUTO_PATIENT_FIELDS), campaign_fields=campaign_fields)

    @staticmethod
    def _is_patient_header(header: str) -> bool:
        lowered = header.lower()
        return any(pattern.search(lowered) for pattern in PATIENT_HEADER_PATTERNS)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _resolve_config(
        self,
        config: Union[IngestionConfig, Mapping[str, Any], None],
        headers: Sequence[str],
    ) -> tuple[IngestionConfig, list[DiagnosticEvent]]:
        if not isinstance(config, IngestionConfig):
            config = IngestionConfig.from_raw(config)
        if not config.is_empty:
            return config, []

        auto = self.auto_config(headers)
        logger.info(f"No field configuration provided; auto-mapped {len(auto.campaign_fields)} campaign columns")
        event = DiagnosticEvent(
            level=DiagnosticLevel.INFO,
            code="auto_mapping",
            message="Using the default patient field mapping",
            details={"campaign_fields": [f.key for f in auto.campaign_fields]},
        )
        return auto, [event]

    def _prepare_rows(
        self,
        table: ParsedTable,
        config: IngestionConfig,
        cancel_event: Optional[threading.Event],
    ) -> list[PreparedRow]:
        """Run the prepare phase on a bounded pool; returns rows in file order.

        Rows skipped because of cancellation are left out, so the result may
        be shorter than the table.
        """

        def work(position: int, raw_row: Mapping[str, Any]) -> Optional[PreparedRow]:
            if cancel_event is not None and cancel_event.is_set():
                return None
            return self._prepare_row(position + 2, raw_row, table.headers, config)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="row-prep") as executor:
            futures = []
            for position, raw_row in enumerate(table.rows):
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(f"Ingestion cancelled; {len(table) - position} rows were not scheduled")
                    break
                futures.append(executor.submit(work, position, raw_row))
            outcomes = [future.result() for future in futures]

        prepared = []
        for outcome in outcomes:
            if outcome is None:
                break
            prepared.append(outcome)
        return prepared

    def _prepare_row(
        self,
        row_index: int,
        raw_row: Mapping[str, Any],
        headers: Sequence[str],
        config: IngestionConfig,
    ) -> PreparedRow:
        """Extract, validate and hash one row. Never raises."""
        prepared = PreparedRow(row_index=row_index)
        try:
            prepared.state = RowState.EXTRACTING
            patient = self.extractor.extract(
                raw_row, headers, config.patient_fields, row_index=row_index, recover_core=True
            )
            prepared.patient_data = patient.extracted_data
            prepared.column_mappings.update(patient.column_mappings)
            prepared.diagnostics.extend(patient.diagnostics)
            if patient.missing_required:
                raise RowExtractionError(
                    f"Missing required patient fields: {', '.join(patient.missing_required)}",
                    missing_fields=patient.missing_required,
                    row_index=row_index,
                )

            prepared.state = RowState.VALIDATING
            message = self.validator.validate(patient.extracted_data, config.patient_validation)
            if message:
                raise RowValidationError(message, row_index=row_index)

            campaign = self.extractor.extract(raw_row, headers, config.campaign_fields, row_index=row_index)
            prepared.campaign_data = campaign.extracted_data
            self._add_campaign_mappings(prepared, campaign.column_mappings)
            prepared.diagnostics.extend(campaign.diagnostics)
            if campaign.missing_required:
                raise RowExtractionError(
                    f"Missing required campaign fields: {', '.join(campaign.missing_required)}",
                    missing_fields=campaign.missing_required,
                    row_index=row_index,
                )

            prepared.state = RowState.RESOLVING_IDENTITY
            prepared.patient_hash = self.resolver.compute_hash(patient.extracted_data)
            return prepared

        except RowError as e:
            logger.debug(f"Row {row_index} invalid during {prepared.state.value}: {type(e).__name__}")
            return self._fail_row(prepared, str(e), raw_row, headers, config, code=type(e).__name__)
        except Exception as e:
            logger.error(f"Unexpected error processing row {row_index}: {type(e).__name__}: {e}", exc_info=True)
            return self._fail_row(prepared, f"Error processing row: {e}", raw_row, headers, config, code="row_error")

    def _fail_row(
        self,
        prepared: PreparedRow,
        message: str,
        raw_row: Mapping[str, Any],
        headers: Sequence[str],
        config: IngestionConfig,
        code: str,
    ) -> PreparedRow:
        """Mark a row invalid and attach a best-effort partial extraction."""
        stage = prepared.state
        prepared.state = RowState.INVALID
        prepared.error = message
        prepared.raw_data = dict(raw_row)
        prepared.diagnostics.append(
            DiagnosticEvent(
                level=DiagnosticLevel.WARNING,
                code=code,
                message=message,
                row_index=prepared.row_index,
                details={"stage": stage.value},
            )
        )

        try:
            partial_patient = self.extractor.extract(
                raw_row, headers, config.patient_fields, enforce_required=False, recover_core=True
            )
            partial_campaign = self.extractor.extract(raw_row, headers, config.campaign_fields, enforce_required=False)
        except Exception as e:
            logger.warning(f"Partial re-extraction failed for row {prepared.row_index}: {type(e).__name__}")
            return prepared

        prepared.patient_data = partial_patient.extracted_data
        prepared.campaign_data = partial_campaign.extracted_data
        prepared.column_mappings.update(partial_patient.column_mappings)
        self._add_campaign_mappings(prepared, partial_campaign.column_mappings)
        return prepared

    @staticmethod
    def _add_campaign_mappings(prepared: PreparedRow, mappings: Mapping[str, str]) -> None:
        # patient mappings take precedence over campaign fields sharing a key
        for key, header in mappings.items():
            prepared.column_mappings.setdefault(key, header)

    @staticmethod
    def _classify(prepared: Sequence[PreparedRow]) -> list[bool]:
        """Flag, in file order, whether each row is the first with its hash."""
        seen: set[str] = set()
        flags = []
        for row in prepared:
            if row.patient_hash is None:
                flags.append(False)
                continue
            flags.append(row.patient_hash not in seen)
            seen.add(row.patient_hash)
        return flags

    def _resolve_identities(
        self,
        prepared: Sequence[PreparedRow],
        first_occurrence: Sequence[bool],
        org_id: str,
    ) -> dict[str, Result[DirectoryMatch]]:
        """Resolve each distinct hash once, on a bounded pool."""
        lookups = [
            self.resolver.build_lookup(row.patient_data, org_id, row.patient_hash)
            for row, first in zip(prepared, first_occurrence)
            if first
        ]
        if not lookups:
            return {}

        def work(lookup) -> Result[DirectoryMatch]:
            try:
                return Result.success_result(self.resolver.resolve_lookup(lookup))
            except IngestionError as e:
                return Result.failure_result(e, error_details={"patient_hash": lookup.patient_hash})

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="identity") as executor:
            outcomes = list(executor.map(work, lookups))

        return {lookup.patient_hash: outcome for lookup, outcome in zip(lookups, outcomes)}

    def _fold(
        self,
        prepared: Sequence[PreparedRow],
        first_occurrence: Sequence[bool],
        resolutions: Mapping[str, Result[DirectoryMatch]],
        config: IngestionConfig,
        accumulator: IngestionAccumulator,
    ) -> None:
        for row, first in zip(prepared, first_occurrence):
            accumulator.record_mappings(row.column_mappings)
            accumulator.add_diagnostics(row.diagnostics)

            if row.failed:
                accumulator.record_row(self._invalid_row(row, [row.error]))
                continue

            variables = self._merge_variables(row, config)
            if row.patient_hash is None:
                accumulator.record_row(self._valid_row(row, variables, match=None))
                continue

            resolution = resolutions[row.patient_hash]
            if first and resolution.is_failure():
                accumulator.add_diagnostics([
                    DiagnosticEvent(
                        level=DiagnosticLevel.ERROR,
                        code="IdentityResolutionError",
                        message=resolution.error,
                        row_index=row.row_index,
                        details={"stage": RowState.RESOLVING_IDENTITY.value},
                    )
                ])
                accumulator.record_row(self._invalid_row(row, [resolution.error], keep_hash=True))
                continue

            match = resolution.value if resolution.is_success() else None
            if not first:
                logger.debug(f"Row {row.row_index} duplicates identity {short_hash(row.patient_hash)}")
            accumulator.record_row(
                self._valid_row(row, variables, match=match, is_duplicate=not first),
                is_duplicate=not first,
            )

    @staticmethod
    def _merge_variables(row: PreparedRow, config: IngestionConfig) -> dict[str, Any]:
        variables = dict(row.campaign_data)
        variables.update(row.patient_data)
        for definition in config.campaign_fields:
            if definition.default_value is not None and variables.get(definition.key) is None:
                variables[definition.key] = definition.default_value
        return variables

    @staticmethod
    def _valid_row(
        row: PreparedRow,
        variables: dict[str, Any],
        match: Optional[DirectoryMatch],
        is_duplicate: bool = False,
    ) -> ProcessedRow:
        return ProcessedRow(
            row_index=row.row_index,
            is_valid=True,
            patient_hash=row.patient_hash,
            patient_id=match.patient_id if match else None,
            is_new_patient=bool(match and match.is_new_patient and not is_duplicate),
            variables=variables,
            patient_data=dict(row.patient_data),
            campaign_data=dict(row.campaign_data),
        )

    @staticmethod
    def _invalid_row(row: PreparedRow, errors: list[str], keep_hash: bool = False) -> ProcessedRow:
        return ProcessedRow(
            row_index=row.row_index,
            is_valid=False,
            patient_hash=row.patient_hash if keep_hash else None,
            variables={**row.campaign_data, **row.patient_data},
            validation_errors=errors,
            patient_data=dict(row.patient_data),
            campaign_data=dict(row.campaign_data),
            raw_data=dict(row.raw_data) if row.raw_data is not None else None,
        )

    # ------------------------------------------------------------------
    # Column diagnostics
    # ------------------------------------------------------------------

    @staticmethod
    def _unmatched_column_warnings(unmatched: Sequence[str], config: IngestionConfig) -> list[str]:
        """Warn only about unmatched headers resembling a configured candidate."""
        universe = [(c, normalize_header(c)) for c in config.all_possible_columns]
        warnings = []
        for header in unmatched:
            norm = normalize_header(header)
            if not norm:
                continue
            for candidate, candidate_norm in universe:
                if not candidate_norm:
                    continue
                contains = min(len(norm), len(candidate_norm)) > 3 and (
                    candidate_norm in norm or norm in candidate_norm
                )
                if contains or fuzz.ratio(norm, candidate_norm) >= NEAR_MISS_SCORE:
                    warnings.append(
                        f"Column '{header}' was not mapped to any field but resembles "
                        f"configured column '{candidate}'"
                    )
                    break
        return warnings
