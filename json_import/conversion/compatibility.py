from __future__ import annotations

import logging
from typing import Iterable

from ..db.store import TableStore
from ..models.column import Column, ColumnType, Table
from .field_types import FIELD_CONFIG_BY_TYPE

"""Column compatibility filter.

A non-link column is importable when its type has a conversion entry. A link
column is importable when the primary column of its linked table is of an
importable type, or is a formula / auto-number column (those are displayed and
matched by value even though they are never written).
"""

logger = logging.getLogger(__name__)

__all__ = [
    "SUPPORTED_COLUMN_TYPES",
    "SUPPORTED_LINKED_PRIMARY_TYPES",
    "filter_deleted_or_unsupported",
    "is_supported",
    "linked_primary_types_by_table_id",
]

SUPPORTED_COLUMN_TYPES: frozenset[ColumnType] = frozenset(FIELD_CONFIG_BY_TYPE)

SUPPORTED_LINKED_PRIMARY_TYPES: frozenset[ColumnType] = SUPPORTED_COLUMN_TYPES | {
    ColumnType.FORMULA,
    ColumnType.AUTO_NUMBER,
}


def linked_primary_types_by_table_id(table: Table, store: TableStore) -> dict[str, ColumnType]:
    """Resolve linked-table-id -> primary column type for every link column of ``table``.

    Computed once per target table change and passed to the other helpers.
    Linked tables the store no longer knows are left out of the map.
    """
    result: dict[str, ColumnType] = {}
    for column in table.link_columns:
        linked_id = column.linked_table_id
        if linked_id is None or linked_id in result:
            continue
        linked_table = store.get_table(linked_id)
        if linked_table is None:
            logger.debug("linked table missing: column=%s linked_table=%s", column.id, linked_id)
            continue
        result[linked_id] = linked_table.primary_column.type
    return result


def is_supported(column: Column, linked_primary_types: dict[str, ColumnType] | None = None) -> bool:
    if column.is_link:
        if not linked_primary_types or column.linked_table_id not in linked_primary_types:
            return False
        return linked_primary_types[column.linked_table_id] in SUPPORTED_LINKED_PRIMARY_TYPES
    return column.type in SUPPORTED_COLUMN_TYPES and not column.is_computed


def filter_deleted_or_unsupported(
    column_ids: Iterable[str],
    table: Table,
    linked_primary_types: dict[str, ColumnType] | None = None,
) -> list[str]:
    """Drop ids whose column no longer exists on ``table`` or is no longer importable."""
    kept: list[str] = []
    for column_id in column_ids:
        column = table.get_column(column_id)
        if column is None or not is_supported(column, linked_primary_types):
            logger.debug("pruned column id from settings: table=%s column=%s", table.id, column_id)
            continue
        kept.append(column_id)
    return kept
