from __future__ import annotations

import copy
import itertools
from typing import Any, Iterable, Sequence

from ..conversion.field_types import FIELD_CONFIG_BY_TYPE, format_value
from ..models.column import LinkRef, Table
from ..models.diff_result import RecordUpdate
from ..models.row_data import ExistingRow

"""In-process table store.

Used by the test-suite and by the CLI when no database is reachable
(DISABLE_DB_CONNECT=1 or connection failure). Link cells are stored as lists of
row ids and read back as LinkRef(id, name) with the linked row's primary value
as name, the same shape PostgresTableStore returns.
"""

__all__ = [
    "InMemoryTableStore",
]


class InMemoryTableStore:
    def __init__(
        self,
        tables: Iterable[Table],
        *,
        read_only_tables: Iterable[str] = (),
        locked_columns: Iterable[tuple[str, str]] = (),
    ) -> None:
        self.tables: dict[str, Table] = {t.id: t for t in tables}
        self._rows: dict[str, dict[int, dict[str, Any]]] = {t: {} for t in self.tables}
        self._ids = itertools.count(1)
        self.read_only_tables = set(read_only_tables)
        self.locked_columns = set(locked_columns)  # (table_id, column_id)
        self.calls: list[tuple[str, str, int]] = []  # (method, table_id, size) 呼び出し履歴

    # --- seeding / test helpers ---

    def add_row(self, table_id: str, values: dict[str, Any]) -> int:
        row_id = next(self._ids)
        self._rows[table_id][row_id] = self._to_storage(self.tables[table_id], values)
        return row_id

    def delete_row(self, table_id: str, row_id: int) -> None:
        self._rows[table_id].pop(row_id, None)

    def raw_rows(self, table_id: str) -> dict[int, dict[str, Any]]:
        return copy.deepcopy(self._rows[table_id])

    # --- TableStore ---

    def get_table(self, table_id: str) -> Table | None:
        return self.tables.get(table_id)

    def load_existing_rows(self, table: Table) -> list[ExistingRow]:
        self.calls.append(("load_existing_rows", table.id, len(self._rows[table.id])))
        return [
            ExistingRow(id=row_id, values=self._from_storage(table, values))
            for row_id, values in self._rows[table.id].items()
        ]

    def count_rows(self, table: Table) -> int:
        return len(self._rows[table.id])

    def rows_still_exist(self, table: Table, row_ids: Sequence[Any]) -> set[Any]:
        self.calls.append(("rows_still_exist", table.id, len(row_ids)))
        rows = self._rows[table.id]
        return {row_id for row_id in row_ids if row_id in rows}

    def create_rows(self, table: Table, rows: Sequence[dict[str, Any]]) -> list[Any]:
        self.calls.append(("create_rows", table.id, len(rows)))
        ids = []
        for fields in rows:
            row_id = next(self._ids)
            self._rows[table.id][row_id] = self._to_storage(table, fields)
            ids.append(row_id)
        return ids

    def update_rows(self, table: Table, updates: Sequence[RecordUpdate]) -> None:
        self.calls.append(("update_rows", table.id, len(updates)))
        rows = self._rows[table.id]
        for update in updates:
            if update.id not in rows:
                raise KeyError(f"row {update.id} does not exist in table '{table.id}'")
            rows[update.id].update(self._to_storage(table, update.fields))

    def create_row(self, table: Table, fields: dict[str, Any]) -> Any:
        self.calls.append(("create_row", table.id, 1))
        row_id = next(self._ids)
        self._rows[table.id][row_id] = self._to_storage(table, fields)
        return row_id

    def has_permission_to_create_rows(self, table: Table, column_ids: Iterable[str] = ()) -> bool:
        return table.id not in self.read_only_tables and not self._any_locked(table, column_ids)

    def has_permission_to_update_rows(self, table: Table, column_ids: Iterable[str] = ()) -> bool:
        return table.id not in self.read_only_tables and not self._any_locked(table, column_ids)

    # --- internals ---

    def _any_locked(self, table: Table, column_ids: Iterable[str]) -> bool:
        return any((table.id, c) in self.locked_columns for c in column_ids)

    def _to_storage(self, table: Table, fields: dict[str, Any]) -> dict[str, Any]:
        stored: dict[str, Any] = {}
        for column_id, value in fields.items():
            column = table.get_column(column_id)
            if column is None:
                raise KeyError(f"unknown column '{column_id}' for table '{table.id}'")
            if column.is_link and value is not None:
                ids = []
                for ref in value:
                    row_id = ref.id if isinstance(ref, LinkRef) else ref
                    if row_id is None:
                        raise ValueError(f"unresolved link value written to {table.id}.{column_id}")
                    ids.append(row_id)
                value = ids
            stored[column_id] = copy.deepcopy(value)
        return stored

    def _from_storage(self, table: Table, stored: dict[str, Any]) -> dict[str, Any]:
        values = copy.deepcopy(stored)
        for column in table.link_columns:
            ids = values.get(column.id)
            if ids is None:
                continue
            values[column.id] = [LinkRef(id=i, name=self._primary_name(column.linked_table_id, i)) for i in ids]
        return values

    def _primary_name(self, table_id: str | None, row_id: Any) -> str | None:
        linked_table = self.tables.get(table_id) if table_id else None
        if linked_table is None:
            return None
        row = self._rows[linked_table.id].get(row_id)
        if row is None:
            return None
        primary = linked_table.primary_column
        value = row.get(primary.id)
        if value is None:
            return None
        if primary.type in FIELD_CONFIG_BY_TYPE:
            return format_value(value, primary)
        return str(value)
