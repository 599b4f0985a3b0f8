"""Domain layer for patient roster ingestion.

This module contains the ingestion configuration and result models, the
ports adapters implement, and the pure services that match, transform,
validate and de-duplicate roster rows.
"""

from .models import (
    FieldDefinition,
    IngestionConfig,
    IngestionResult,
    ParsedTable,
    ProcessedRow,
    ValidationConfig,
)

__all__ = [
    "FieldDefinition",
    "IngestionConfig",
    "IngestionResult",
    "ParsedTable",
    "ProcessedRow",
    "ValidationConfig",
]
