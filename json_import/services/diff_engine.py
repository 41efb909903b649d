from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Hashable, Sequence

from ..models.column import Column, ColumnType, Table
from ..models.config_models import ColumnMapping
from ..models.diff_result import DiffResult, RecordUpdate
from ..models.row_data import ExistingRow
from .matcher import create_matcher, normalize_for_comparison
from .projection import mapped_columns, project_row
from .scheduler import ChunkedScheduler

"""Diff engine: classify every incoming line as create / update / unchanged / duplicate.

Algorithm
---------
1. No merge key, or no existing rows: every non-empty projection is a create.
2. Otherwise existing rows are bucketed by the normalized value of the FIRST
   key column only; the full composite matcher runs within the bucket.
3. Each non-empty incoming row claims the first matching existing row that no
   earlier incoming row has claimed. Claimed rows are compared over the mapped
   columns and land in ``to_update`` or ``unchanged_by_id``.
4. A row whose matches are all claimed already is counted in
   ``duplicate_ignored_count`` and otherwise dropped.
5. Conversion failures from every row (empty or not) are grouped per column.

Each existing row id is claimed at most once, and every non-empty incoming row
is counted in exactly one of the four outcomes.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "compute_data_diff",
]


def _bucket_key(value: Any) -> Hashable:
    normalized = normalize_for_comparison(value)
    try:
        hash(normalized)
    except TypeError:
        # dict 等ハッシュ不可な値は repr でまとめる (バケットは絞り込み用途のみ)
        return ("unhashable", repr(normalized))
    return normalized


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, (list, tuple)) and len(value) == 0)


def _link_names(value: Any) -> list[Any]:
    return [ref.name if ref.name is not None else ("id", ref.id) for ref in value]


def _cell_changed(column: Column, existing: Any, incoming: Any) -> bool:
    if column.is_link:
        if _is_blank(existing) and _is_blank(incoming):
            return False
        if _is_blank(existing) or _is_blank(incoming):
            return True
        existing = _link_names(existing)
        incoming = _link_names(incoming)
    return normalize_for_comparison(existing) != normalize_for_comparison(incoming)


def _has_changes(
    compared: Sequence[Column],
    candidate: ExistingRow,
    values: dict[str, Any],
) -> bool:
    return any(_cell_changed(c, candidate.get(c.id), values.get(c.id)) for c in compared)


def compute_data_diff(
    rows: Sequence[Sequence[Any]],
    column_mapping: dict[str, ColumnMapping],
    key_column_ids: Sequence[str],
    table: Table,
    existing_rows: Sequence[ExistingRow],
    *,
    linked_primary_types: dict[str, ColumnType] | None = None,
    scheduler: ChunkedScheduler | None = None,
) -> DiffResult:
    scheduler = scheduler or ChunkedScheduler()
    columns = table.columns
    result = DiffResult()

    def project(row: Sequence[Any]):
        projection = project_row(row, column_mapping, columns, linked_primary_types)
        result.add_failures(projection.failures)
        return projection

    if not key_column_ids or not existing_rows:
        def add_create(row: Sequence[Any], index: int) -> None:
            projection = project(row)
            if not projection.is_empty:
                result.to_create.append(dict(projection.values))

        scheduler.for_each(rows, add_create)
        logger.debug(
            "diff fast path: table=%s rows=%s creates=%s", table.id, len(rows), len(result.to_create)
        )
        return result

    first_key = key_column_ids[0]
    buckets: dict[Hashable, list[ExistingRow]] = defaultdict(list)
    for existing in existing_rows:
        buckets[_bucket_key(existing.get(first_key))].append(existing)

    matcher = create_matcher(key_column_ids)
    compared = [column for column, _ in mapped_columns(column_mapping, columns, linked_primary_types)]
    claimed: set[Any] = set()
    updates: list[RecordUpdate] = []

    def classify(row: Sequence[Any], index: int) -> None:
        projection = project(row)
        if projection.is_empty:
            return
        values = projection.values
        candidates = buckets.get(_bucket_key(values.get(first_key)), [])
        matched = [c for c in candidates if matcher(values, c)]
        if not matched:
            result.to_create.append(dict(values))
            return
        target = next((c for c in matched if c.id not in claimed), None)
        if target is None:
            # 先行行が全候補を確保済み: 後続の重複行は適用しない
            result.duplicate_ignored_count += 1
            return
        claimed.add(target.id)
        if _has_changes(compared, target, values):
            updates.append(RecordUpdate(id=target.id, fields=dict(values)))
        else:
            result.unchanged_by_id[target.id] = dict(values)

    scheduler.for_each(rows, classify)
    result.to_update = updates
    logger.debug(
        "diff computed: table=%s create=%s update=%s unchanged=%s duplicates=%s failed=%s",
        table.id,
        len(result.to_create),
        len(result.to_update),
        len(result.unchanged_by_id),
        result.duplicate_ignored_count,
        result.num_failed_values,
    )
    return result
