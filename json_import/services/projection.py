from __future__ import annotations

import logging
from typing import Any, Sequence

from ..conversion.compatibility import is_supported
from ..conversion.field_types import LinkValueError, convert, is_empty_raw
from ..models.column import Column, ColumnType, Table
from ..models.config_models import ColumnMapping
from ..models.row_data import RowProjection

"""Row projection: one incoming line + column mapping -> typed values and failures."""

logger = logging.getLogger(__name__)

__all__ = [
    "mapped_columns",
    "mappings_matching_headers",
    "project_row",
]


def mapped_columns(
    column_mapping: dict[str, ColumnMapping],
    columns: Sequence[Column],
    linked_primary_types: dict[str, ColumnType] | None = None,
) -> list[tuple[Column, int]]:
    """Return (column, source_index) for supported, enabled, mapped columns in table order.

    Mapping entries for columns that are not in ``columns`` are ignored.
    """
    result: list[tuple[Column, int]] = []
    for column in columns:
        mapping = column_mapping.get(column.id)
        if mapping is None or not mapping.enabled or mapping.source_index is None:
            continue
        if not is_supported(column, linked_primary_types):
            continue
        result.append((column, mapping.source_index))
    return result


def project_row(
    row: Sequence[Any],
    column_mapping: dict[str, ColumnMapping],
    columns: Sequence[Column],
    linked_primary_types: dict[str, ColumnType] | None = None,
) -> RowProjection:
    values: dict[str, Any] = {}
    failures: dict[str, Any] = {}
    for column, index in mapped_columns(column_mapping, columns, linked_primary_types):
        # 短い行は空文字で埋めたものとして扱う
        raw = row[index] if 0 <= index < len(row) else ""
        try:
            typed = convert(raw, column)
        except LinkValueError as e:
            logger.debug("link cell rejected: column=%s err=%s", column.id, e)
            typed = None
        values[column.id] = typed
        if typed is None and not is_empty_raw(raw):
            failures[column.id] = raw
    return RowProjection(values=values, failures=failures)


def mappings_matching_headers(
    headers: Sequence[str],
    table: Table,
    linked_primary_types: dict[str, ColumnType] | None = None,
) -> dict[str, ColumnMapping]:
    """Pre-populate mappings by case-insensitive header == column name.

    For each supported column the first matching header wins.
    """
    normalized = [str(h).strip().lower() for h in headers]
    result: dict[str, ColumnMapping] = {}
    for column in table.columns:
        if not is_supported(column, linked_primary_types):
            continue
        name = column.name.strip().lower()
        for index, header in enumerate(normalized):
            if header and header == name:
                result[column.id] = ColumnMapping(enabled=True, source_index=index)
                break
    return result
