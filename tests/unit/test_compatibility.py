from __future__ import annotations

from json_import.conversion.compatibility import (
    filter_deleted_or_unsupported,
    is_supported,
    linked_primary_types_by_table_id,
)
from json_import.db.memory_store import InMemoryTableStore
from json_import.models.column import Column, ColumnType, Table


def _table_with_link(linked_table_id: str = "companies") -> Table:
    return Table(
        id="tasks",
        name="Tasks",
        columns=(
            Column(id="title", name="Title", type=ColumnType.SINGLE_LINE_TEXT),
            Column(id="company", name="Company", type=ColumnType.MULTIPLE_RECORD_LINKS,
                   linked_table_id=linked_table_id),
            Column(id="total", name="Total", type=ColumnType.FORMULA),
        ),
        primary_column_id="title",
    )


def _linked(primary_type: ColumnType) -> Table:
    return Table(
        id="companies",
        name="Companies",
        columns=(Column(id="name", name="Name", type=primary_type),),
        primary_column_id="name",
    )


def test_non_link_support_follows_registry():
    assert is_supported(Column(id="a", name="A", type=ColumnType.NUMBER))
    assert not is_supported(Column(id="a", name="A", type=ColumnType.ROLLUP))
    assert not is_supported(Column(id="a", name="A", type=ColumnType.MULTIPLE_ATTACHMENTS))
    # computed フラグ付きの列は書き込み不可
    assert not is_supported(Column(id="a", name="A", type=ColumnType.SINGLE_LINE_TEXT, computed=True))


def test_link_supported_when_linked_primary_is_formula_or_auto_number():
    table = _table_with_link()
    link = table.get_column("company")
    for primary_type in (ColumnType.SINGLE_LINE_TEXT, ColumnType.FORMULA, ColumnType.AUTO_NUMBER):
        store = InMemoryTableStore([table, _linked(primary_type)])
        assert is_supported(link, linked_primary_types_by_table_id(table, store))


def test_link_unsupported_for_other_primary_types_or_missing_table():
    table = _table_with_link()
    link = table.get_column("company")
    store = InMemoryTableStore([table, _linked(ColumnType.ROLLUP)])
    assert not is_supported(link, linked_primary_types_by_table_id(table, store))
    assert not is_supported(link, None)
    missing = InMemoryTableStore([table])
    assert linked_primary_types_by_table_id(table, missing) == {}


def test_filter_deleted_or_unsupported_keeps_order():
    table = _table_with_link()
    store = InMemoryTableStore([table, _linked(ColumnType.SINGLE_LINE_TEXT)])
    linked = linked_primary_types_by_table_id(table, store)
    ids = ["company", "gone", "total", "title"]
    assert filter_deleted_or_unsupported(ids, table, linked) == ["company", "title"]
