from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

"""Column / table schema models for the typed table store.

A table owns an ordered tuple of columns and names one of them as its primary
column (the value shown when a row is referenced from a link column elsewhere).
Column and table identifiers are plain strings; the PostgreSQL store uses them
directly as physical table / column names.
"""

__all__ = [
    "ColumnType",
    "Collaborator",
    "Column",
    "LinkRef",
    "Table",
]


class ColumnType(Enum):
    """Closed set of column types known to the store.

    The first block is the importable set. The second block holds store-side
    types that can exist on a table but are never written by the importer.
    """
    SINGLE_LINE_TEXT = "single_line_text"
    EMAIL = "email"
    URL = "url"
    MULTILINE_TEXT = "multiline_text"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"
    SINGLE_SELECT = "single_select"
    MULTIPLE_SELECTS = "multiple_selects"
    SINGLE_COLLABORATOR = "single_collaborator"
    MULTIPLE_COLLABORATORS = "multiple_collaborators"
    MULTIPLE_RECORD_LINKS = "multiple_record_links"
    DATE = "date"
    DATE_TIME = "date_time"
    PHONE_NUMBER = "phone_number"
    CHECKBOX = "checkbox"
    RATING = "rating"
    DURATION = "duration"

    FORMULA = "formula"
    AUTO_NUMBER = "auto_number"
    ROLLUP = "rollup"
    LOOKUP = "lookup"
    CREATED_TIME = "created_time"
    MULTIPLE_ATTACHMENTS = "multiple_attachments"

    @property
    def is_computed(self) -> bool:
        return self in _COMPUTED_TYPES


_COMPUTED_TYPES = frozenset({
    ColumnType.FORMULA,
    ColumnType.AUTO_NUMBER,
    ColumnType.ROLLUP,
    ColumnType.LOOKUP,
    ColumnType.CREATED_TIME,
})


@dataclass(frozen=True)
class LinkRef:
    """Reference to a row of a linked table.

    Freshly converted cells carry only ``name`` (the linked row may not exist
    yet). After link resolution ``id`` is set. Rows loaded from the store carry
    both.
    """
    id: Any = None
    name: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.id is not None


@dataclass(frozen=True)
class Collaborator:
    email: str
    name: str | None = None


@dataclass(frozen=True)
class Column:
    id: str
    name: str
    type: ColumnType
    linked_table_id: str | None = None  # link 列のみ
    choices: tuple[str, ...] = ()  # single/multiple select の選択肢
    max_rating: int = 5
    collaborators: tuple[Collaborator, ...] = ()
    computed: bool = False

    @property
    def is_computed(self) -> bool:
        return self.computed or self.type.is_computed

    @property
    def is_link(self) -> bool:
        return self.type is ColumnType.MULTIPLE_RECORD_LINKS


@dataclass(frozen=True)
class Table:
    id: str
    name: str
    columns: tuple[Column, ...]
    primary_column_id: str

    def get_column(self, column_id: str) -> Column | None:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    @property
    def primary_column(self) -> Column:
        column = self.get_column(self.primary_column_id)
        if column is None:
            raise KeyError(f"primary column '{self.primary_column_id}' missing from table '{self.id}'")
        return column

    @property
    def link_columns(self) -> list[Column]:
        return [c for c in self.columns if c.is_link]
