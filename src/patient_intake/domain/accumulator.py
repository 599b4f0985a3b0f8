"""Ingestion Accumulator - run-level bookkeeping for classified rows.

Collects statistics, sample rows and column usage as rows are classified,
then assembles the final IngestionResult.

Architecture:
    - Pure domain logic with no infrastructure dependencies
    - Every mutation happens under one lock, so the accumulator can be fed
      from worker threads; the pipeline still folds rows in file order so
      that sample selection and duplicate counting are reproducible
"""

import logging
from threading import Lock
from typing import Iterable, Mapping, Optional, Sequence

from patient_intake.domain.models import (
    DiagnosticEvent,
    IngestionResult,
    IngestionStats,
    ProcessedRow,
)

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 5


class IngestionAccumulator:
    """Thread-safe fold target for one ingestion run.

    Example:
        ```python
        accumulator = IngestionAccumulator()
        for row, is_duplicate in classified:
            accumulator.record_row(row, is_duplicate=is_duplicate)
        result = accumulator.build_result(headers)
        ```
    """

    def __init__(self, sample_limit: int = DEFAULT_SAMPLE_LIMIT):
        self.sample_limit = sample_limit
        self._lock = Lock()
        self._stats = IngestionStats()
        self._valid_rows: list[ProcessedRow] = []
        self._invalid_rows: list[ProcessedRow] = []
        self._valid_samples: list[ProcessedRow] = []
        self._invalid_samples: list[ProcessedRow] = []
        self._column_mappings: dict[str, str] = {}
        self._matched: set[str] = set()
        self._diagnostics: list[DiagnosticEvent] = []

    def record_row(self, row: ProcessedRow, is_duplicate: bool = False) -> None:
        """Count a classified row.

        Parameters:
            row: The classified row
            is_duplicate: True when an earlier row in the file had the same hash
        """
        with self._lock:
            self._stats.total_rows += 1

            if row.patient_hash:
                if is_duplicate:
                    self._stats.duplicate_patients += 1
                else:
                    self._stats.unique_patients += 1
                    if row.is_valid and row.patient_id:
                        if row.is_new_patient:
                            self._stats.new_patients += 1
                        else:
                            self._stats.existing_patients += 1

            if row.is_valid:
                self._stats.valid_rows += 1
                self._valid_rows.append(row)
                if len(self._valid_samples) < self.sample_limit:
                    self._valid_samples.append(row)
            else:
                self._stats.invalid_rows += 1
                self._invalid_rows.append(row)
                if len(self._invalid_samples) < self.sample_limit:
                    self._invalid_samples.append(row)

    def record_mappings(self, mappings: Mapping[str, str]) -> None:
        """Merge a row's column mapping; the first header seen for a key wins."""
        with self._lock:
            for key, header in mappings.items():
                self._column_mappings.setdefault(key, header)
                self._matched.add(header)

    def add_diagnostics(self, events: Iterable[DiagnosticEvent]) -> None:
        with self._lock:
            self._diagnostics.extend(events)

    @property
    def stats(self) -> IngestionStats:
        with self._lock:
            return self._stats.model_copy()

    def matched_columns(self, headers: Sequence[str]) -> list[str]:
        with self._lock:
            return [h for h in headers if h in self._matched]

    def unmatched_columns(self, headers: Sequence[str]) -> list[str]:
        with self._lock:
            return [h for h in headers if h not in self._matched]

    def build_result(
        self,
        headers: Sequence[str],
        errors: Optional[list[str]] = None,
        warnings: Optional[list[str]] = None,
        truncated: bool = False,
    ) -> IngestionResult:
        """Assemble the final result; header order drives column ordering."""
        matched = self.matched_columns(headers)
        unmatched = self.unmatched_columns(headers)
        with self._lock:
            return IngestionResult(
                valid_rows=list(self._valid_rows),
                invalid_rows=list(self._invalid_rows),
                stats=self._stats.model_copy(),
                column_mappings=dict(self._column_mappings),
                matched_columns=matched,
                unmatched_columns=unmatched,
                sample_rows=self._valid_samples + self._invalid_samples,
                errors=list(errors or []),
                warnings=list(warnings or []),
                diagnostics=list(self._diagnostics),
                truncated=truncated,
            )
