"""Enumerations shared by the ingestion domain models."""

from enum import Enum


class TransformKind(str, Enum):
    """Semantic type a raw cell value is converted to."""
    TEXT = "text"
    SHORT_DATE = "short_date"
    LONG_DATE = "long_date"
    TIME = "time"
    PHONE = "phone"
    PROVIDER = "provider"
    NUMBER = "number"
    BOOLEAN = "boolean"

    @classmethod
    def coerce(cls, value) -> "TransformKind":
        """Map an arbitrary config value to a kind, defaulting to TEXT."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.TEXT


class RowState(str, Enum):
    """Lifecycle of a single row inside an ingestion run."""
    PENDING = "pending"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    RESOLVING_IDENTITY = "resolving-identity"
    INVALID = "invalid"


class DiagnosticLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DirectoryBackend(str, Enum):
    """Patient directory implementations selectable from configuration."""
    MEMORY = "memory"
    DUCKDB = "duckdb"
