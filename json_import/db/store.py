from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

from ..models.column import Table
from ..models.diff_result import RecordUpdate
from ..models.row_data import ExistingRow

"""Store query surface consumed by the import engine.

Field payloads are ``{column_id: typed_value}`` dicts as produced by row
projection. Link column values are lists of LinkRef; by the time a payload
reaches ``create_rows`` / ``update_rows`` every LinkRef carries an id.
All calls are synchronous and issued one at a time.
"""

__all__ = [
    "TableStore",
]


class TableStore(Protocol):
    def get_table(self, table_id: str) -> Table | None: ...

    def load_existing_rows(self, table: Table) -> list[ExistingRow]: ...

    def count_rows(self, table: Table) -> int: ...

    def rows_still_exist(self, table: Table, row_ids: Sequence[Any]) -> set[Any]: ...

    def create_rows(self, table: Table, rows: Sequence[dict[str, Any]]) -> list[Any]: ...

    def update_rows(self, table: Table, updates: Sequence[RecordUpdate]) -> None: ...

    def create_row(self, table: Table, fields: dict[str, Any]) -> Any: ...

    def has_permission_to_create_rows(self, table: Table, column_ids: Iterable[str] = ()) -> bool: ...

    def has_permission_to_update_rows(self, table: Table, column_ids: Iterable[str] = ()) -> bool: ...
