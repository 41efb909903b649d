from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Iterable, Sequence

from ..conversion.field_types import FIELD_CONFIG_BY_TYPE, format_value
from ..models.column import Column, ColumnType, LinkRef, Table
from ..models.diff_result import RecordUpdate
from ..models.row_data import ExistingRow
from .batch_insert import batch_insert, batch_update, quote_ident

"""PostgreSQL implementation of the TableStore surface (psycopg2 cursor).

Physical layout (created outside this tool):
- one table per configured table id, primary key column ``"id" bigint``
- one column per configured column id, typed per SQL_TYPE_BY_COLUMN_TYPE
- link columns are ``bigint[]`` holding ids of rows in the linked table

Writes go through ``batch_insert`` / ``batch_update`` (execute_values). The
connection is expected in autocommit mode so each chunk is durable on its own.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "PostgresTableStore",
    "SQL_TYPE_BY_COLUMN_TYPE",
]

SQL_TYPE_BY_COLUMN_TYPE: dict[ColumnType, str] = {
    ColumnType.SINGLE_LINE_TEXT: "text",
    ColumnType.EMAIL: "text",
    ColumnType.URL: "text",
    ColumnType.MULTILINE_TEXT: "text",
    ColumnType.NUMBER: "double precision",
    ColumnType.CURRENCY: "double precision",
    ColumnType.PERCENT: "double precision",
    ColumnType.SINGLE_SELECT: "text",
    ColumnType.MULTIPLE_SELECTS: "text[]",
    ColumnType.SINGLE_COLLABORATOR: "text",
    ColumnType.MULTIPLE_COLLABORATORS: "text[]",
    ColumnType.MULTIPLE_RECORD_LINKS: "bigint[]",
    ColumnType.DATE: "date",
    ColumnType.DATE_TIME: "timestamptz",
    ColumnType.PHONE_NUMBER: "text",
    ColumnType.CHECKBOX: "boolean",
    ColumnType.RATING: "integer",
    ColumnType.DURATION: "numeric",
}

ID_COLUMN = "id"


def _encode(column: Column, value: Any) -> Any:
    if value is None:
        return None
    if column.is_link:
        return [ref.id if isinstance(ref, LinkRef) else ref for ref in value]
    if isinstance(value, tuple):
        return list(value)
    return value


def _decode(column: Column, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        value = value.astimezone(dt.timezone.utc) if value.tzinfo else value
        return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}.{value.microsecond // 1000:03d}Z"
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, Decimal):
        if value == value.to_integral_value() and column.type in (ColumnType.DURATION, ColumnType.RATING):
            return int(value)
        return float(value)
    return value


class PostgresTableStore:
    def __init__(self, cursor: Any, tables: dict[str, Table], page_size: int = 1000) -> None:
        self.cursor = cursor
        self.tables = tables
        self.page_size = page_size

    def get_table(self, table_id: str) -> Table | None:
        return self.tables.get(table_id)

    # --- reads ---

    def _primary_names(self, linked_table_id: str) -> dict[Any, str]:
        linked_table = self.tables.get(linked_table_id)
        if linked_table is None:
            return {}
        primary = linked_table.primary_column
        self.cursor.execute(
            f"SELECT {quote_ident(ID_COLUMN)}, {quote_ident(primary.id)} FROM {quote_ident(linked_table.id)}"
        )
        names: dict[Any, str] = {}
        for row_id, raw in self.cursor.fetchall():
            value = _decode(primary, raw)
            if value is None:
                continue
            names[row_id] = format_value(value, primary) if primary.type in FIELD_CONFIG_BY_TYPE else str(value)
        return names

    def load_existing_rows(self, table: Table) -> list[ExistingRow]:
        cols = [c.id for c in table.columns]
        select_cols = ",".join(quote_ident(c) for c in [ID_COLUMN, *cols])
        self.cursor.execute(
            f"SELECT {select_cols} FROM {quote_ident(table.id)} ORDER BY {quote_ident(ID_COLUMN)}"
        )
        fetched = self.cursor.fetchall()
        names_by_table = {
            c.linked_table_id: self._primary_names(c.linked_table_id)
            for c in table.link_columns
            if c.linked_table_id
        }
        rows: list[ExistingRow] = []
        for record in fetched:
            row_id, raw_values = record[0], record[1:]
            values: dict[str, Any] = {}
            for column, raw in zip(table.columns, raw_values):
                if column.is_link:
                    names = names_by_table.get(column.linked_table_id, {})
                    values[column.id] = None if raw is None else [LinkRef(id=i, name=names.get(i)) for i in raw]
                else:
                    values[column.id] = _decode(column, raw)
            rows.append(ExistingRow(id=row_id, values=values))
        logger.debug("loaded %s rows from %s", len(rows), table.id)
        return rows

    def count_rows(self, table: Table) -> int:
        self.cursor.execute(f"SELECT count(*) FROM {quote_ident(table.id)}")
        return int(self.cursor.fetchone()[0])

    def rows_still_exist(self, table: Table, row_ids: Sequence[Any]) -> set[Any]:
        if not row_ids:
            return set()
        self.cursor.execute(
            f"SELECT {quote_ident(ID_COLUMN)} FROM {quote_ident(table.id)} "
            f"WHERE {quote_ident(ID_COLUMN)} = ANY(%s)",
            (list(row_ids),),
        )
        return {r[0] for r in self.cursor.fetchall()}

    # --- writes ---

    def _columns_for(self, table: Table, payloads: Iterable[dict[str, Any]]) -> list[Column]:
        keys: set[str] = set()
        for fields in payloads:
            keys.update(fields)
        unknown = keys - {c.id for c in table.columns}
        if unknown:
            raise KeyError(f"unknown column(s) for table '{table.id}': {sorted(unknown)}")
        return [c for c in table.columns if c.id in keys]

    def create_rows(self, table: Table, rows: Sequence[dict[str, Any]]) -> list[Any]:
        if not rows:
            return []
        columns = self._columns_for(table, rows)
        if not columns:
            # 値を持たない行: DEFAULT VALUES で 1 行ずつ
            ids = []
            for _ in rows:
                self.cursor.execute(
                    f"INSERT INTO {quote_ident(table.id)} DEFAULT VALUES RETURNING {quote_ident(ID_COLUMN)}"
                )
                ids.append(self.cursor.fetchone()[0])
            return ids
        template = "(" + ",".join(f"%s::{SQL_TYPE_BY_COLUMN_TYPE[c.type]}" for c in columns) + ")"
        values = [tuple(_encode(c, fields.get(c.id)) for c in columns) for fields in rows]
        result = batch_insert(
            self.cursor,
            table.id,
            [c.id for c in columns],
            values,
            returning=[ID_COLUMN],
            page_size=self.page_size,
            template=template,
        )
        return [r[0] for r in result.returned_values or []]

    def create_row(self, table: Table, fields: dict[str, Any]) -> Any:
        return self.create_rows(table, [fields])[0]

    def update_rows(self, table: Table, updates: Sequence[RecordUpdate]) -> None:
        # 更新列の組合せ毎に 1 文 (VALUES の列数を揃えるため)
        groups: dict[tuple[str, ...], list[RecordUpdate]] = defaultdict(list)
        for update in updates:
            columns = self._columns_for(table, [update.fields])
            if columns:
                groups[tuple(c.id for c in columns)].append(update)
        for column_ids, group in groups.items():
            columns = [table.get_column(c) for c in column_ids]
            casts = ["bigint", *(SQL_TYPE_BY_COLUMN_TYPE[c.type] for c in columns)]
            values = [
                (u.id, *(_encode(c, u.fields.get(c.id)) for c in columns))
                for u in group
            ]
            batch_update(
                self.cursor, table.id, ID_COLUMN, list(column_ids), values, casts, page_size=self.page_size
            )

    # --- permissions ---

    def _has_privilege(self, table: Table, privilege: str, column_ids: Iterable[str]) -> bool:
        self.cursor.execute("SELECT has_table_privilege(%s, %s)", (table.id, privilege))
        if not self.cursor.fetchone()[0]:
            return False
        for column_id in column_ids:
            self.cursor.execute(
                "SELECT has_column_privilege(%s, %s, %s)", (table.id, column_id, privilege)
            )
            if not self.cursor.fetchone()[0]:
                return False
        return True

    def has_permission_to_create_rows(self, table: Table, column_ids: Iterable[str] = ()) -> bool:
        return self._has_privilege(table, "INSERT", column_ids)

    def has_permission_to_update_rows(self, table: Table, column_ids: Iterable[str] = ()) -> bool:
        return self._has_privilege(table, "UPDATE", column_ids)
