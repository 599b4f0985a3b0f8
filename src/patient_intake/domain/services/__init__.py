"""Domain Services.

This package contains domain services that implement the ingestion logic
without infrastructure dependencies.
"""

from patient_intake.domain.services.column_matcher import ColumnMatcher
from patient_intake.domain.services.field_extractor import ExtractionResult, FieldExtractor
from patient_intake.domain.services.identity import PatientIdentityResolver, extract_unique_patients
from patient_intake.domain.services.pipeline import IngestionPipeline
from patient_intake.domain.services.row_validator import RowValidator
from patient_intake.domain.services.value_transformer import ValueTransformer

__all__ = [
    "ColumnMatcher",
    "ExtractionResult",
    "FieldExtractor",
    "IngestionPipeline",
    "PatientIdentityResolver",
    "RowValidator",
    "ValueTransformer",
    "extract_unique_patients",
]
