from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Sequence

from ..conversion.compatibility import filter_deleted_or_unsupported, linked_primary_types_by_table_id
from ..db.store import TableStore
from ..logging.error_log import ErrorLogBuffer
from ..models.column import ColumnType, Table
from ..models.config_models import ColumnMapping, ImportSettings
from ..models.diff_result import DiffResult
from ..models.row_data import ExistingRow, ParsedData
from ..preprocess.json_reader import split_headers
from .batch_executor import (
    RECORD_BATCH_SIZE,
    ImportBlockedError,
    WriteReport,
    check_row_limit,
    create_or_update_records,
)
from .diff_engine import compute_data_diff
from .progress import ProgressCallback
from .projection import mappings_matching_headers
from .scheduler import ChunkedScheduler, DiffGeneration
from .summary import describe_diff

"""Import session: review state for one (parsed file, target table) pair.

The session owns the operator's current choices (an ImportSettings value), the
snapshot of existing rows and the latest DiffResult. Every mutator recomputes
the diff through a DiffGeneration counter. A mutator invoked while a diff is
running (from the scheduler's yield hook) only bumps the generation; the
running computation then discards its result and starts over with the latest
state, so only the most recent request is ever committed.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ImportSession",
    "ValidationResult",
    "initial_settings",
]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    message: str | None = None


def initial_settings(
    parsed_data: ParsedData,
    table: Table,
    stored: ImportSettings,
    linked_primary_types: dict[str, ColumnType] | None = None,
) -> ImportSettings:
    """Derive the starting settings for a freshly parsed file.

    Stored mappings are reused only when every stored index fits the first
    line. Columns whose name matches a first-line value are mapped to it (stored
    mappings win) and the first line is then taken as the header line.
    """
    first_line = parsed_data.first_line
    if not first_line:
        return replace(stored, first_line_headers=True)

    in_bounds = all(
        m.source_index is None or 0 <= m.source_index < len(first_line)
        for m in stored.column_mappings.values()
    )
    mappings = dict(stored.column_mappings) if in_bounds else {}
    header_matches = mappings_matching_headers(first_line, table, linked_primary_types)
    if header_matches:
        for column_id, mapping in header_matches.items():
            mappings.setdefault(column_id, mapping)
        first_line_headers = True
    else:
        first_line_headers = stored.first_line_headers if in_bounds else False
    return ImportSettings(
        column_mappings=mappings,
        merge_column_ids=stored.merge_column_ids,
        first_line_headers=first_line_headers,
        should_merge=stored.should_merge,
    )


class ImportSession:
    def __init__(
        self,
        store: TableStore,
        table: Table,
        parsed_data: ParsedData,
        settings: ImportSettings,
        *,
        scheduler: ChunkedScheduler | None = None,
        max_rows_per_table: int = 50000,
        batch_size: int = RECORD_BATCH_SIZE,
    ) -> None:
        self.store = store
        self.table = table
        self.parsed_data = parsed_data
        self.settings = settings
        self.scheduler = scheduler or ChunkedScheduler()
        self.max_rows_per_table = max_rows_per_table
        self.batch_size = batch_size
        self.generation = DiffGeneration()
        self.linked_primary_types = linked_primary_types_by_table_id(table, store)
        self.existing_rows: list[ExistingRow] | None = None
        self.diff: DiffResult | None = None
        self._diff_in_flight = False
        self.headers, self.rows = split_headers(parsed_data, settings.first_line_headers)

    @classmethod
    def from_settings(
        cls,
        store: TableStore,
        table: Table,
        parsed_data: ParsedData,
        stored: ImportSettings | None = None,
        **kwargs: Any,
    ) -> ImportSession:
        linked = linked_primary_types_by_table_id(table, store)
        settings = initial_settings(parsed_data, table, stored or ImportSettings(), linked)
        return cls(store, table, parsed_data, settings, **kwargs)

    # --- diff lifecycle ---

    @property
    def is_diff_ready(self) -> bool:
        return self.diff is not None

    def load_table_data(self) -> DiffResult | None:
        self.existing_rows = self.store.load_existing_rows(self.table)
        return self.compute_diff()

    def compute_diff(self) -> DiffResult | None:
        """Recompute the diff. Returns None when called while another diff is running."""
        generation = self.generation.issue()
        self.diff = None
        if self._diff_in_flight:
            # 実行中の計算が世代不一致を検知して再計算する
            return None
        self._diff_in_flight = True
        try:
            while True:
                if self.existing_rows is None:
                    self.existing_rows = self.store.load_existing_rows(self.table)
                result = compute_data_diff(
                    self.rows,
                    self.settings.column_mappings,
                    self.settings.effective_merge_column_ids,
                    self.table,
                    self.existing_rows,
                    linked_primary_types=self.linked_primary_types,
                    scheduler=self.scheduler,
                )
                if self.generation.is_current(generation):
                    self.diff = result
                    return result
                logger.debug(
                    "discarding stale diff: generation=%s latest=%s", generation, self.generation.current
                )
                generation = self.generation.current
        finally:
            self._diff_in_flight = False

    # --- mutators ---

    def _update_settings(self, settings: ImportSettings) -> DiffResult | None:
        self.settings = settings
        return self.compute_diff()

    def set_mapping(self, column_id: str, source_index: int | None) -> DiffResult | None:
        if self.table.get_column(column_id) is None:
            raise KeyError(f"unknown column '{column_id}' for table '{self.table.id}'")
        current = self.settings.column_mappings.get(column_id)
        enabled = current.enabled if current is not None else True
        return self._update_settings(
            self.settings.with_mapping(column_id, ColumnMapping(enabled=enabled, source_index=source_index))
        )

    def toggle_column(self, column_id: str, enabled: bool) -> DiffResult | None:
        current = self.settings.column_mappings.get(column_id) or ColumnMapping(enabled=False, source_index=None)
        return self._update_settings(
            self.settings.with_mapping(column_id, ColumnMapping(enabled=enabled, source_index=current.source_index))
        )

    def set_merge_key(self, column_ids: Sequence[str]) -> DiffResult | None:
        for column_id in column_ids:
            if self.table.get_column(column_id) is None:
                raise KeyError(f"unknown column '{column_id}' for table '{self.table.id}'")
        return self._update_settings(replace(self.settings, merge_column_ids=tuple(column_ids)))

    def set_should_merge(self, should_merge: bool) -> DiffResult | None:
        return self._update_settings(replace(self.settings, should_merge=should_merge))

    def set_first_line_headers(self, first_line_headers: bool) -> DiffResult | None:
        self.headers, self.rows = split_headers(self.parsed_data, first_line_headers)
        return self._update_settings(replace(self.settings, first_line_headers=first_line_headers))

    def change_table(self, table: Table, stored: ImportSettings | None = None) -> DiffResult | None:
        """Switch the target table; mappings restart from ``stored`` (or header matches)."""
        self.table = table
        self.linked_primary_types = linked_primary_types_by_table_id(table, self.store)
        settings = initial_settings(self.parsed_data, table, stored or ImportSettings(), self.linked_primary_types)
        self.headers, self.rows = split_headers(self.parsed_data, settings.first_line_headers)
        self.existing_rows = None
        return self._update_settings(settings)

    def refresh_table(self, table: Table) -> DiffResult | None:
        """Apply a schema change of the current table (columns deleted or retyped)."""
        if table.id != self.table.id:
            raise ValueError("refresh_table expects the same table id; use change_table")
        self.table = table
        self.linked_primary_types = linked_primary_types_by_table_id(table, self.store)
        valid = set(filter_deleted_or_unsupported(self.settings.column_mappings, table, self.linked_primary_types))
        mappings = {k: v for k, v in self.settings.column_mappings.items() if k in valid}
        merge_ids = tuple(
            filter_deleted_or_unsupported(self.settings.merge_column_ids, table, self.linked_primary_types)
        )
        self.existing_rows = None
        return self._update_settings(replace(self.settings, column_mappings=mappings, merge_column_ids=merge_ids))

    # --- validation / permissions ---

    def can_user_perform_import(self) -> bool:
        diff = self.diff
        if diff is None:
            return True
        if diff.to_create:
            column_ids = sorted({c for row in diff.to_create for c in row})
            if not self.store.has_permission_to_create_rows(self.table, column_ids):
                return False
        if diff.to_update:
            column_ids = sorted({c for u in diff.to_update for c in u.fields})
            if not self.store.has_permission_to_update_rows(self.table, column_ids):
                return False
        return True

    def validate(self) -> ValidationResult:
        mappings = self.settings.column_mappings
        enabled = [m for m in mappings.values() if m.enabled]
        if not enabled or all(m.source_index is None for m in enabled):
            return ValidationResult(False, "Map at least one JSON column to a field")

        merge_ids = self.settings.merge_column_ids
        if self.settings.should_merge:
            if not merge_ids:
                return ValidationResult(False, "Choose a field to match existing records for merging")
            for column_id in merge_ids:
                m = mappings.get(column_id)
                if m is None or not m.enabled or m.source_index is None:
                    return ValidationResult(False, "Map the merge field to a JSON column")
            for column_id in merge_ids:
                column = self.table.get_column(column_id)
                if column is not None and column.is_link:
                    return ValidationResult(
                        False, f'The "{column.name}" field links to another table and cannot be used for merging'
                    )

        for column in self.table.columns:
            m = mappings.get(column.id)
            if m is not None and m.enabled and m.source_index is None:
                return ValidationResult(False, f'Map a JSON column to the "{column.name}" field for merging')

        # 権限チェックは最後 (マッピング検証を優先)
        if not self.can_user_perform_import():
            return ValidationResult(False, "You don't have permissions to import to the selected fields")
        return ValidationResult(True)

    # --- reporting / write ---

    def remaining_rows(self) -> int:
        return max(self.max_rows_per_table - self.store.count_rows(self.table), 0)

    def status_text(self) -> str | None:
        if self.diff is None:
            return None
        return describe_diff(self.diff, self.remaining_rows())

    def failed_values_by_column_name(self) -> dict[str, list[Any]]:
        if self.diff is None:
            return {}
        out: dict[str, list[Any]] = {}
        for column_id, values in self.diff.failed_conversions_by_column.items():
            column = self.table.get_column(column_id)
            out[column.name if column else column_id] = list(values)
        return out

    def import_records(
        self,
        on_progress: ProgressCallback | None = None,
        *,
        error_log: ErrorLogBuffer | None = None,
    ) -> WriteReport:
        diff = self.diff
        if diff is None:
            raise ImportBlockedError("Data diff is not ready")
        validation = self.validate()
        if not validation.is_valid:
            raise ImportBlockedError(validation.message)
        check_row_limit(self.store.count_rows(self.table), len(diff.to_create), self.max_rows_per_table)
        report = create_or_update_records(
            self.store,
            self.table,
            diff,
            on_progress,
            batch_size=self.batch_size,
            error_log=error_log,
            source_name=self.parsed_data.source_name,
        )
        # diff は 1 回だけ消費する
        self.diff = None
        self.existing_rows = None
        return report

    def settings_to_remember(self) -> tuple[str, ImportSettings]:
        return self.table.id, self.settings
