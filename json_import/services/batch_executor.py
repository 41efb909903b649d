from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..db.store import TableStore
from ..logging.error_log import ErrorLogBuffer
from ..models.column import Table
from ..models.diff_result import DiffResult, RecordUpdate
from ..models.error_record import ErrorRecord
from ..models.processing_result import BatchStatsAccumulator
from .link_resolver import build_linked_record_plan, resolve_linked_records
from .progress import ProgressCallback, ProgressCounter

"""Batch mutation executor.

Applies a DiffResult to the store:

    total = len(to_create) + len(to_update) + distinct linked names
    link pre-pass                       -> progress
    for each update chunk:  re-check existence, vanished ids -> create list
                            update_rows  -> progress
    for each create chunk:  create_rows  -> progress

Chunks are issued sequentially and never retried. A store failure in chunk N
leaves chunks 1..N-1 applied and surfaces as BatchWriteError.
"""

logger = logging.getLogger(__name__)

RECORD_BATCH_SIZE = 50

__all__ = [
    "BatchWriteError",
    "ImportBlockedError",
    "RECORD_BATCH_SIZE",
    "WriteReport",
    "check_row_limit",
    "create_or_update_records",
    "row_limit_message",
]


class ImportBlockedError(Exception):
    """Raised before any write when the import must not start."""


class BatchWriteError(Exception):
    """A write chunk failed after ``rows_touched`` rows were already applied."""

    def __init__(
        self,
        message: str,
        *,
        rows_touched: int,
        chunk_index: int,
        phase: str,
        report: WriteReport | None = None,
    ) -> None:
        super().__init__(message)
        self.rows_touched = rows_touched
        self.chunk_index = chunk_index
        self.phase = phase  # link / update / create
        self.report = report  # 失敗時点までの集計


@dataclass
class WriteReport:
    created: int = 0
    updated: int = 0
    recreated: int = 0  # 書き込み時点で消えていた update 対象 (create 側へ移動)
    linked_rows_created: int = 0
    unresolved_link_names: int = 0
    total: int = 0
    touched: int = 0
    batch_stats: BatchStatsAccumulator = field(default_factory=BatchStatsAccumulator)


def row_limit_message(remaining: int) -> str:
    plural = "" if remaining == 1 else "s"
    return (
        "The JSON file has too many records to import. "
        f"You can import at most {remaining} more record{plural}."
    )


def check_row_limit(existing_count: int, num_to_create: int, max_rows_per_table: int = 50000) -> None:
    remaining = max(max_rows_per_table - existing_count, 0)
    if num_to_create > remaining:
        raise ImportBlockedError(row_limit_message(remaining))


def _chunks(items: list[Any], size: int):
    for start in range(0, len(items), size):
        yield start // size, items[start:start + size]


def create_or_update_records(
    store: TableStore,
    table: Table,
    diff: DiffResult,
    on_progress: ProgressCallback | None = None,
    *,
    batch_size: int = RECORD_BATCH_SIZE,
    error_log: ErrorLogBuffer | None = None,
    source_name: str = "",
) -> WriteReport:
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    # DiffResult 自体は変更しない (link 書き換えはコピー上で行う)
    to_create: list[dict[str, Any]] = copy.deepcopy(diff.to_create)
    to_update: list[RecordUpdate] = copy.deepcopy(diff.to_update)

    plan = build_linked_record_plan(table, [*to_create, *(u.fields for u in to_update)])
    total = len(to_create) + len(to_update) + plan.total_names
    progress = ProgressCounter(total, on_progress)
    report = WriteReport(total=total)

    def fail(phase: str, chunk_index: int, exc: Exception) -> BatchWriteError:
        message = f"{phase} chunk {chunk_index} failed on table '{table.id}': {exc}"
        logger.error(message)
        if error_log is not None:
            error_log.append(ErrorRecord.create(
                file=source_name, table=table.id, row=-1, error_type="BATCH_WRITE_ERROR", message=message,
            ))
        report.touched = progress.touched
        return BatchWriteError(
            message, rows_touched=progress.touched, chunk_index=chunk_index, phase=phase, report=report
        )

    if plan.total_names:
        try:
            resolution = resolve_linked_records(
                store, table, [*to_create, *(u.fields for u in to_update)], progress,
                plan=plan, batch_size=batch_size,
            )
        except Exception as e:
            raise fail("link", 0, e) from e
        report.linked_rows_created = resolution.created_count
        report.unresolved_link_names = resolution.unresolved_count
        for linked_table_id, names in resolution.unresolved.items():
            logger.warning("unresolved link names dropped: table=%s count=%s", linked_table_id, len(names))
            if error_log is not None:
                for name in names:
                    error_log.append(ErrorRecord.create(
                        file=source_name, table=linked_table_id, row=-1, error_type="LINK_UNRESOLVED",
                        message=f"could not resolve or create linked row '{name}'",
                    ))
    progress.report()

    for chunk_index, chunk in _chunks(to_update, batch_size):
        started = time.perf_counter()
        try:
            alive = store.rows_still_exist(table, [u.id for u in chunk])
            updates = []
            for update in chunk:
                if update.id in alive:
                    updates.append(update)
                    continue
                # 取込中に削除された行: id を捨てて create へ回す
                to_create.append(update.fields)
                report.recreated += 1
                logger.warning("update target vanished, re-routing to create: table=%s id=%s", table.id, update.id)
                if error_log is not None:
                    error_log.append(ErrorRecord.create(
                        file=source_name, table=table.id, row=-1, error_type="STALE_ROW_RECREATED",
                        message=f"row {update.id} no longer exists; created as a new row",
                    ))
            if updates:
                store.update_rows(table, updates)
        except Exception as e:
            raise fail("update", chunk_index, e) from e
        report.batch_stats.add_batch_time(time.perf_counter() - started)
        report.updated += len(updates)
        progress.advance(len(updates))
        progress.report()

    for chunk_index, chunk in _chunks(to_create, batch_size):
        started = time.perf_counter()
        try:
            store.create_rows(table, chunk)
        except Exception as e:
            raise fail("create", chunk_index, e) from e
        report.batch_stats.add_batch_time(time.perf_counter() - started)
        report.created += len(chunk)
        progress.advance(len(chunk))
        progress.report()

    report.touched = progress.touched
    logger.debug(
        "write finished: table=%s created=%s updated=%s recreated=%s linked_created=%s touched=%s/%s",
        table.id, report.created, report.updated, report.recreated,
        report.linked_rows_created, report.touched, report.total,
    )
    return report
