"""Domain Ports - Abstract Contracts for Roster Ingestion.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement, the exception taxonomy of the ingestion engine, and the Result type
used to carry per-row outcomes without raising.

Security Impact:
    - The patient directory only ever receives normalized identity data plus
      the identity hash, never whole spreadsheet rows
    - Error types separate fatal file/config problems from row-scoped ones, so
      a single bad row can never abort a run

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (CSV/workbook parsers, in-memory/DuckDB directories, formatters)
      implement these ports
    - Domain services depend on the ports, never on adapters
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from patient_intake.domain.models import ParsedTable

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error message (only present if success=False)
        error_type: Type of error (RowValidationError, IdentityResolutionError, etc.)
        error_details: Additional error context (row_index, stage, etc.)

    Example:
        ```python
        result = Result.failure_result(
            RowValidationError("Valid phone number is required", row_index=4),
            error_details={"stage": "validating"}
        )
        if result.is_failure():
            record_invalid(result.error, result.error_details)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error; defaults to the exception class name
            error_details: Additional context (row_index, stage, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class IngestionError(Exception):
    """Base exception for all ingestion-related errors."""

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.source = source
        self.details = details or {}


class ParseError(IngestionError):
    """Raised when an uploaded file cannot be turned into a table.

    Fatal to the whole run: the content is empty, has no data rows, is not a
    readable workbook, or the delimited parser rejected it.
    """
    pass


class ConfigError(IngestionError):
    """Raised when no usable field configuration exists, even after auto-mapping."""
    pass


class RowError(IngestionError):
    """Base class for row-scoped failures. Never propagates past the row boundary.

    Attributes:
        row_index: 1-based row index of the failing row (header is row 1)
    """

    def __init__(
        self,
        message: str,
        row_index: Optional[int] = None,
        source: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, source=source, details=details)
        self.row_index = row_index


class RowExtractionError(RowError):
    """Raised when required patient or campaign fields have no matching column."""

    def __init__(self, message: str, missing_fields: Optional[list[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing_fields = missing_fields or []


class RowValidationError(RowError):
    """Raised when a row fails the configured phone/DOB/name rules."""
    pass


class IdentityResolutionError(RowError):
    """Raised when the patient directory lookup fails for a row."""
    pass


class DirectoryError(IngestionError):
    """Raised by patient directory adapters on backend failures.

    Attributes:
        operation: The directory operation that failed
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.operation = operation


# ============================================================================
# Value objects exchanged with the patient directory
# ============================================================================

@dataclass(frozen=True)
class PatientLookup:
    """Normalized identity handed to the patient directory.

    Attributes:
        patient_hash: Primary (or secondary, if no first name) identity hash
        secondary_hash: Fallback hash from last name, DOB and phone tail
        org_id: Owning organization
    """

    patient_hash: str
    org_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: Optional[str] = None
    phone: Optional[str] = None
    external_id: Optional[str] = None
    secondary_hash: Optional[str] = None


@dataclass(frozen=True)
class DirectoryMatch:
    """Outcome of a find-or-create call."""

    patient_id: str
    is_new_patient: bool


# ============================================================================
# Ports
# ============================================================================

class TableParserPort(ABC):
    """Abstract contract for turning decoded file bytes into a ParsedTable.

    Example Usage:
        ```python
        parser = get_parser("roster.csv")
        table = parser.parse(raw_bytes, "roster.csv")
        ```
    """

    @abstractmethod
    def parse(self, content: bytes, filename: str) -> ParsedTable:
        """Parse decoded file bytes.

        Parameters:
            content: Raw file bytes (already base64-decoded if needed)
            filename: Original file name, for error messages

        Returns:
            ParsedTable with headers in file order and at least one row

        Raises:
            ParseError: If the content is empty, has no data rows or is malformed
        """
        pass

    @abstractmethod
    def can_parse(self, filename: str) -> bool:
        """Check if this parser handles files with the given name."""
        pass


class FileDecoderPort(ABC):
    """Abstract contract for turning uploaded content into a ParsedTable.

    Unlike TableParserPort, content may still be a text string or a
    base64 data URI; the decoder normalizes it and picks a parser.
    """

    @abstractmethod
    def parse(self, content: Union[bytes, str], filename: str) -> ParsedTable:
        """Decode and parse uploaded content.

        Raises:
            ParseError: If the content cannot be decoded or yields no rows
        """
        pass


class PatientDirectoryPort(ABC):
    """Abstract contract for the persistent patient directory.

    Implementations must be callable concurrently and idempotent per
    normalized identity: two calls with the same ``patient_hash`` and
    ``org_id`` return the same patient id and create at most one record.
    """

    @abstractmethod
    def find_or_create_patient(self, lookup: PatientLookup) -> DirectoryMatch:
        """Find a patient by identity hash, creating it if absent.

        Raises:
            DirectoryError: If the backend cannot be queried or written
        """
        pass

    def close(self) -> None:
        """Release backend resources (optional)."""
        return None


class PhoneFormatterPort(ABC):
    """Normalizes raw phone strings to one canonical representation."""

    @abstractmethod
    def normalize(self, raw: str) -> str:
        pass


class DateCheckerPort(ABC):
    """Answers whether a raw value can be read as a calendar date."""

    @abstractmethod
    def is_plausible_date(self, raw: Any) -> bool:
        pass
