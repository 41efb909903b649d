from __future__ import annotations

import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from ..config.settings_store import SettingsStore
from ..conversion.compatibility import linked_primary_types_by_table_id
from ..conversion.field_types import help_message
from ..db.store import TableStore
from ..logging.error_log import ErrorLogBuffer
from ..models.column import Table
from ..models.config_models import ImportConfig, ImportSettings
from ..models.diff_result import DiffResult
from ..models.error_record import ErrorRecord
from ..models.processing_result import ImportResult
from ..preprocess.json_reader import JsonInputError, load_parsed_data
from .batch_executor import BatchWriteError, ImportBlockedError, WriteReport
from .link_resolver import LinkResolutionError
from .progress import ProgressCallback, ProgressTracker
from .scheduler import ChunkedScheduler
from .session import ImportSession, initial_settings

"""Service orchestration for one JSON -> table import run.

run_import() wires the pieces together:
1. Parse the JSON file into header/value lines
2. Pick the target table and restore the operator settings
3. Compute the diff against the existing rows
4. Validate (mapping, merge key, permissions, row limit)
5. Write (link pre-pass, update chunks, create chunks)
6. Flush the error log and persist the settings

Fatal problems before the first write raise ProcessingError. A failing write
chunk does not raise; the result is flagged ``partial_failure`` instead because
earlier chunks are already durable.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ProcessingError",
    "resolve_merge_key",
    "resolve_table",
    "run_import",
]


class ProcessingError(Exception):
    """Fatal error that prevents an import from starting."""
    pass


def resolve_table(
    config: ImportConfig, store: TableStore, table_id: str | None, settings_store: SettingsStore | None
) -> Table:
    """Pick the target table: explicit id, then the remembered one, then the only table."""
    candidate = table_id or (settings_store.table_id if settings_store is not None else None)
    if candidate is None:
        if len(config.tables) != 1:
            raise ProcessingError(
                f"no target table selected; choose one of: {', '.join(sorted(config.tables))}"
            )
        candidate = next(iter(config.tables))
    table = store.get_table(candidate)
    if table is None:
        raise ProcessingError(f"unknown table '{candidate}'")
    return table


def resolve_merge_key(table: Table, merge_key: Sequence[str]) -> tuple[str, ...]:
    """Accept column ids or column names (case-insensitive) for the merge key."""
    by_name = {c.name.lower(): c.id for c in table.columns}
    resolved = []
    for key in merge_key:
        if table.get_column(key) is not None:
            resolved.append(key)
        elif key.lower() in by_name:
            resolved.append(by_name[key.lower()])
        else:
            raise ProcessingError(f"unknown merge field '{key}' for table '{table.id}'")
    return tuple(resolved)


def _log_failed_conversions(
    table: Table, diff: DiffResult, error_log: ErrorLogBuffer, source_name: str
) -> None:
    for column_id, values in diff.failed_conversions_by_column.items():
        column = table.get_column(column_id)
        name = column.name if column is not None else column_id
        hint = help_message(column.type) if column is not None else None
        preview = ", ".join(repr(v) for v in values[:5])
        message = f"{len(values)} value(s) could not be converted for field '{name}': {preview}"
        if hint:
            message += f" ({hint})"
        logger.warning(message)
        for value in values:
            error_log.append(ErrorRecord.create(
                file=source_name,
                table=table.id,
                row=-1,
                column=column_id,
                error_type="CONVERSION_FAILED",
                message=f"cannot convert {value!r} for field '{name}'",
            ))


def _build_result(
    table: Table,
    diff: DiffResult,
    report: WriteReport | None,
    started: float,
    *,
    dry_run: bool = False,
    partial_failure: bool = False,
) -> ImportResult:
    elapsed = time.perf_counter() - started
    if report is None:
        created, updated, linked_created = len(diff.to_create), len(diff.to_update), 0
        total_batches, avg_batch, p95_batch = 0, 0.0, 0.0
    else:
        created, updated, linked_created = report.created, report.updated, report.linked_rows_created
        total_batches, avg_batch, p95_batch = report.batch_stats.get_stats()
    written = 0 if dry_run else created + updated
    throughput = written / elapsed if elapsed > 0 else 0.0
    return ImportResult(
        table_id=table.id,
        created=created,
        updated=updated,
        unchanged=len(diff.unchanged_by_id),
        duplicates_ignored=diff.duplicate_ignored_count,
        linked_rows_created=linked_created,
        failed_values=diff.num_failed_values,
        elapsed_seconds=elapsed,
        throughput_rows_per_sec=throughput,
        dry_run=dry_run,
        partial_failure=partial_failure,
        total_batches=total_batches,
        avg_batch_seconds=avg_batch,
        p95_batch_seconds=p95_batch,
    )


def run_import(
    config: ImportConfig,
    store: TableStore,
    json_path: Path,
    *,
    table_id: str | None = None,
    merge_key: Sequence[str] | None = None,
    first_line_headers: bool | None = None,
    record_path: str | None = None,
    dry_run: bool = False,
    on_progress: ProgressCallback | None = None,
    settings_store: SettingsStore | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ImportResult:
    """Import one JSON file into one table.

    Args:
        config: Loaded ImportConfig (tables, limits)
        store: TableStore implementation (PostgreSQL or in-memory)
        json_path: JSON file to import
        table_id: Target table id; defaults to the remembered / only table
        merge_key: Column ids or names to merge on; enables merging
        first_line_headers: Override the header toggle (None = keep derived value)
        record_path: Dotted path to the record array inside the document
        dry_run: Compute and report the diff without writing
        on_progress: ``(touched, total)`` callback; defaults to a tqdm bar
        settings_store: Persisted operator settings (None = do not persist)
        error_log: Buffer for per-value problems (None = new buffer under ./logs)

    Returns:
        ImportResult with the counters of the SUMMARY line

    Raises:
        ProcessingError: For problems detected before any write
    """
    started = time.perf_counter()
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    limits = config.limits

    try:
        parsed = load_parsed_data(json_path, record_path, max_rows=limits.max_rows_per_file)
    except JsonInputError as e:
        raise ProcessingError(str(e)) from e

    table = resolve_table(config, store, table_id, settings_store)
    linked = linked_primary_types_by_table_id(table, store)
    stored = settings_store.settings_for(table, linked) if settings_store is not None else ImportSettings()
    settings = initial_settings(parsed, table, stored, linked)
    if first_line_headers is not None:
        settings = replace(settings, first_line_headers=first_line_headers)
    if merge_key:
        settings = replace(settings, merge_column_ids=resolve_merge_key(table, merge_key), should_merge=True)

    session = ImportSession(
        store,
        table,
        parsed,
        settings,
        scheduler=ChunkedScheduler(budget_seconds=limits.scheduler_budget_ms / 1000),
        max_rows_per_table=limits.max_rows_per_table,
        batch_size=limits.batch_size,
    )
    logger.info(f"Importing {parsed.source_name} into table '{table.id}' (lines={len(parsed)})")

    diff = session.load_table_data()
    if diff is None:  # pragma: no cover - 再入時のみ
        raise ProcessingError("data diff is not ready")
    _log_failed_conversions(table, diff, error_log, parsed.source_name)
    status = session.status_text()
    if status:
        logger.info(status)

    report: WriteReport | None = None
    partial_failure = False
    try:
        validation = session.validate()
        if not validation.is_valid:
            raise ImportBlockedError(validation.message)
        if dry_run:
            logger.info("dry run: no rows written")
        else:
            with ProgressTracker(description=f"Importing {table.id}") as tracker:
                callback = on_progress or tracker.as_callback()
                try:
                    report = session.import_records(callback, error_log=error_log)
                except BatchWriteError as e:
                    partial_failure = True
                    report = e.report
    except (ImportBlockedError, LinkResolutionError) as e:
        error_log.append(ErrorRecord.create(
            file=parsed.source_name, table=table.id, row=-1, error_type="IMPORT_BLOCKED", message=str(e),
        ))
        raise ProcessingError(str(e)) from e
    finally:
        # エラーログ書き込み失敗で全体を落とさない
        try:
            path = error_log.flush()
            if path is not None:
                logger.info(f"error log written: {path}")
        except OSError as e:
            logger.warning(f"failed to write error log: {e}")

    if settings_store is not None and not dry_run:
        if settings_store.is_schema_version_out_of_date():
            # 新しいバージョンの設定ファイルを古い形式で上書きしない
            logger.warning(f"settings written by a newer version, not saved: {settings_store.path}")
        else:
            settings_store.remember(*session.settings_to_remember())
            settings_store.save()

    return _build_result(table, diff, report, started, dry_run=dry_run, partial_failure=partial_failure)
