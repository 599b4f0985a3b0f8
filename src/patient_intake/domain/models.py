"""Ingestion Domain Models.

This module defines the canonical data models that flow through the ingestion
engine: campaign field definitions, validation toggles, the parsed table handed
over by file parsers, and the classified rows and result returned to callers.

Security Impact:
    - Field configuration arrives as arbitrary JSON from upstream; it is passed
      through sanitizing constructors instead of being trusted as-is
    - Raw row data is kept only on invalid rows, for operator diagnostics

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Serialised with camelCase aliases to match the upload workflow's payloads
    - Follows Hexagonal Architecture: parsers and directories only see these types
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from patient_intake.domain.enums import DiagnosticLevel, TransformKind

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Campaign configuration
# ============================================================================

class FieldDefinition(CamelModel):
    """One semantic field a campaign expects to find in uploaded files.

    Parameters:
        key: Stable identifier, unique within its field list
        label: Display name, used in missing-field messages
        possible_columns: Ordered candidate header names
        transform: Semantic type the raw cell is converted to
        required: Whether a row without a matching column is invalid
        default_value: Value used when the field is not filled by the file
        description: Free-text description for operators
        referenced_table: When set, the raw value is stored untouched for
            lookup in the named table by the caller
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    key: str = Field(..., min_length=1, description="Stable field identifier")
    label: str = Field(..., description="Display name")
    possible_columns: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Candidate header names, in preference order"
    )
    transform: TransformKind = Field(TransformKind.TEXT, description="Transform kind")
    required: bool = Field(False, description="Whether the field must be present")
    default_value: Optional[Any] = Field(None, description="Fallback value")
    description: Optional[str] = Field(None, description="Operator-facing description")
    referenced_table: Optional[str] = Field(None, description="Lookup table for raw values")

    @field_validator("transform", mode="before")
    @classmethod
    def coerce_transform(cls, v) -> TransformKind:
        """Unknown or missing transform kinds degrade to plain text."""
        return TransformKind.coerce(v)

    @field_validator("possible_columns", mode="before")
    @classmethod
    def clean_possible_columns(cls, v) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(str(c) for c in v if c is not None and str(c).strip())

    @classmethod
    def from_raw(cls, raw: Any, position: int = 0) -> Optional["FieldDefinition"]:
        """Build a field from an untrusted JSON object, filling safe defaults.

        Parameters:
            raw: Field object as found in the campaign configuration
            position: Index of the field in its list, used for generated keys

        Returns:
            FieldDefinition, or None if ``raw`` is not an object
        """
        if not isinstance(raw, Mapping):
            return None

        key = str(raw.get("key") or "").strip() or f"field_{position + 1}"
        label = raw.get("label") or raw.get("key") or "Unnamed Field"
        possible = raw.get("possibleColumns", raw.get("possible_columns"))
        if not isinstance(possible, (list, tuple)):
            possible = [key]

        referenced = raw.get("referencedTable", raw.get("referenced_table"))
        description = raw.get("description")
        return cls(
            key=key,
            label=str(label),
            possible_columns=possible,
            transform=raw.get("transform") or TransformKind.TEXT,
            required=bool(raw.get("required")),
            default_value=raw.get("defaultValue", raw.get("default_value")),
            description=str(description) if description is not None else None,
            referenced_table=referenced if isinstance(referenced, str) else None,
        )


class ValidationConfig(CamelModel):
    """Independent toggles for per-row patient validation rules."""

    require_valid_phone: bool = False
    require_valid_dob: bool = Field(False, alias="requireValidDOB")
    require_name: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "ValidationConfig":
        """Only an explicit ``true`` enables a rule."""
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            require_valid_phone=raw.get("requireValidPhone") is True,
            require_valid_dob=raw.get("requireValidDOB") is True,
            require_name=raw.get("requireName") is True,
        )


def _sanitize_fields(raw_fields: Any, section: str) -> list[FieldDefinition]:
    if not isinstance(raw_fields, (list, tuple)):
        return []

    fields: list[FieldDefinition] = []
    seen: set[str] = set()
    for position, raw in enumerate(raw_fields):
        definition = FieldDefinition.from_raw(raw, position)
        if definition is None:
            logger.warning(f"Skipping non-object {section} field at index {position}")
            continue
        if definition.key in seen:
            logger.warning(f"Dropping duplicate {section} field key '{definition.key}'")
            continue
        seen.add(definition.key)
        fields.append(definition)
    return fields


class IngestionConfig(CamelModel):
    """Campaign-specific field configuration for one ingestion run.

    When both field lists are empty the pipeline derives an auto-mapping from
    the file headers (see ``IngestionPipeline``).
    """

    patient_fields: list[FieldDefinition] = Field(default_factory=list)
    campaign_fields: list[FieldDefinition] = Field(default_factory=list)
    patient_validation: ValidationConfig = Field(default_factory=ValidationConfig)

    @model_validator(mode="after")
    def check_unique_keys(self) -> "IngestionConfig":
        for name, fields in (("patient", self.patient_fields), ("campaign", self.campaign_fields)):
            keys = [f.key for f in fields]
            if len(keys) != len(set(keys)):
                raise ValueError(f"Duplicate {name} field keys: {keys}")
        return self

    @property
    def is_empty(self) -> bool:
        return not self.patient_fields and not self.campaign_fields

    @property
    def all_possible_columns(self) -> list[str]:
        return [c for f in self.patient_fields + self.campaign_fields for c in f.possible_columns]

    @classmethod
    def from_raw(cls, raw: Any) -> "IngestionConfig":
        """Sanitize an arbitrary campaign configuration object.

        Accepts ``{"variables": {"patient": ..., "campaign": ...}}``, the same
        sections at top level, or flat ``patientFields``/``campaignFields`` keys.
        Anything unrecognised yields an empty configuration.
        """
        if not isinstance(raw, Mapping):
            return cls()

        if "patientFields" in raw or "campaignFields" in raw:
            return cls(
                patient_fields=_sanitize_fields(raw.get("patientFields"), "patient"),
                campaign_fields=_sanitize_fields(raw.get("campaignFields"), "campaign"),
                patient_validation=ValidationConfig.from_raw(raw.get("patientValidation")),
            )

        variables = raw.get("variables")
        if not isinstance(variables, Mapping) or not (
            _section_fields(variables, "patient") or _section_fields(variables, "campaign")
        ):
            if "patient" in raw or "campaign" in raw:
                variables = raw
            elif not isinstance(variables, Mapping):
                variables = {}

        patient = variables.get("patient") if isinstance(variables.get("patient"), Mapping) else {}
        campaign = variables.get("campaign") if isinstance(variables.get("campaign"), Mapping) else {}
        return cls(
            patient_fields=_sanitize_fields(patient.get("fields"), "patient"),
            campaign_fields=_sanitize_fields(campaign.get("fields"), "campaign"),
            patient_validation=ValidationConfig.from_raw(patient.get("validation")),
        )


def _section_fields(variables: Mapping, section: str) -> list:
    block = variables.get(section)
    if isinstance(block, Mapping) and isinstance(block.get("fields"), list):
        return block["fields"]
    return []


# ============================================================================
# Parsed input
# ============================================================================

@dataclass(frozen=True)
class ParsedTable:
    """Flat table produced once per ingested file.

    Attributes:
        headers: Column headers in file order
        rows: Read-only maps of header to raw cell value, in file order
    """

    headers: tuple[str, ...]
    rows: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "headers", tuple(self.headers))
        object.__setattr__(
            self, "rows", tuple(MappingProxyType(dict(row)) for row in self.rows)
        )

    def __len__(self) -> int:
        return len(self.rows)


# ============================================================================
# Results
# ============================================================================

class DiagnosticEvent(CamelModel):
    """Leveled diagnostic emitted while processing a file or a row."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    level: DiagnosticLevel
    code: str
    message: str
    row_index: Optional[int] = None
    details: dict[str, Any] = Field(default_factory=dict)


class ProcessedRow(CamelModel):
    """A classified row. Immutable once built.

    Parameters:
        row_index: 1-based position among parsed rows, counting the header as
            row 1; blank lines skipped by the parser are not counted
        is_valid: Classification outcome
        patient_hash: Identity hash, when enough identity data was present
        patient_id: Directory id, filled only after identity resolution
        is_new_patient: Whether the directory created the patient in this run
        variables: Merged patient and campaign values
        validation_errors: Human-readable failure messages, in order
        patient_data: Extracted patient values (partial for invalid rows)
        campaign_data: Extracted campaign values (partial for invalid rows)
        raw_data: Original cell values, kept for invalid rows only
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    row_index: int
    is_valid: bool
    patient_hash: Optional[str] = None
    patient_id: Optional[str] = None
    is_new_patient: bool = False
    variables: dict[str, Any] = Field(default_factory=dict)
    validation_errors: list[str] = Field(default_factory=list)
    patient_data: dict[str, Any] = Field(default_factory=dict)
    campaign_data: dict[str, Any] = Field(default_factory=dict)
    raw_data: Optional[dict[str, Any]] = None


class IngestionStats(CamelModel):
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    unique_patients: int = 0
    duplicate_patients: int = 0
    new_patients: int = 0
    existing_patients: int = 0


class IngestionResult(CamelModel):
    """Outcome of one ingestion call. Not persisted by this package.

    ``errors`` carries file- and config-level problems plus the explicit
    "no valid rows" condition; ``warnings`` carries non-fatal column notices.
    """

    valid_rows: list[ProcessedRow] = Field(default_factory=list)
    invalid_rows: list[ProcessedRow] = Field(default_factory=list)
    stats: IngestionStats = Field(default_factory=IngestionStats)
    column_mappings: dict[str, str] = Field(default_factory=dict)
    matched_columns: list[str] = Field(default_factory=list)
    unmatched_columns: list[str] = Field(default_factory=list)
    sample_rows: list[ProcessedRow] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    diagnostics: list[DiagnosticEvent] = Field(default_factory=list)
    truncated: bool = False

    @property
    def has_no_valid_rows(self) -> bool:
        """True for the flagged condition of rows present but none valid."""
        return self.stats.total_rows > 0 and self.stats.valid_rows == 0
