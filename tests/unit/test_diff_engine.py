from __future__ import annotations

from json_import.conversion.compatibility import linked_primary_types_by_table_id
from json_import.db.memory_store import InMemoryTableStore
from json_import.models.column import Column, ColumnType, LinkRef, Table
from json_import.models.config_models import ColumnMapping
from json_import.models.row_data import ExistingRow
from json_import.services.batch_executor import create_or_update_records
from json_import.services.diff_engine import compute_data_diff

MAPPING = {
    "title": ColumnMapping(enabled=True, source_index=0),
    "status": ColumnMapping(enabled=True, source_index=1),
    "points": ColumnMapping(enabled=True, source_index=2),
}

ROWS = [
    ["Write docs", "Open", "3"],
    ["Fix bug", "Closed", "5"],
    ["Ship", "Open", "8"],
]


def _existing(*rows: tuple[int, dict]) -> list[ExistingRow]:
    return [ExistingRow(id=row_id, values=values) for row_id, values in rows]


def test_empty_store_no_key_creates_every_row(tasks_table):
    diff = compute_data_diff(ROWS, MAPPING, [], tasks_table, [])
    assert len(diff.to_create) == 3
    assert diff.to_update == []
    assert diff.unchanged_by_id == {}
    assert diff.to_create[0] == {"title": "Write docs", "status": "Open", "points": 3.0}


def test_no_key_ignores_existing_rows_and_skips_empty_rows(tasks_table):
    existing = _existing((1, {"title": "Write docs", "status": "Open", "points": 3.0}))
    rows = [*ROWS, ["", "", ""], []]
    diff = compute_data_diff(rows, MAPPING, [], tasks_table, existing)
    assert len(diff.to_create) == 3
    assert diff.to_update == [] and diff.unchanged_by_id == {}
    assert diff.num_rows_accounted == 3


def test_matching_row_with_same_values_is_unchanged(tasks_table):
    existing = _existing((1, {"title": "Write docs", "status": "Open", "points": 3.0}))
    diff = compute_data_diff([["Write docs ", "open", "3"]], MAPPING, ["title"], tasks_table, existing)
    assert diff.unchanged_by_id == {1: {"title": "Write docs ", "status": "Open", "points": 3.0}}
    assert diff.to_update == []
    assert diff.to_create == []


def test_matching_row_with_changed_value_is_update(tasks_table):
    existing = _existing((1, {"title": "Write docs", "status": "Open", "points": 3.0}))
    diff = compute_data_diff([["Write docs", "Closed", "3"]], MAPPING, ["title"], tasks_table, existing)
    assert len(diff.to_update) == 1
    assert diff.to_update[0].id == 1
    assert diff.to_update[0].fields["status"] == "Closed"


def test_unmapped_columns_are_not_compared(tasks_table):
    existing = _existing((1, {"title": "Write docs", "status": "Closed", "points": 99.0}))
    mapping = {"title": MAPPING["title"]}
    diff = compute_data_diff([["Write docs"]], mapping, ["title"], tasks_table, existing)
    assert list(diff.unchanged_by_id) == [1]


def test_second_match_of_same_row_is_duplicate(tasks_table):
    existing = _existing((1, {"title": "Write docs", "status": "Open", "points": 3.0}))
    rows = [["Write docs", "Closed", "3"], ["Write docs", "Open", "4"]]
    diff = compute_data_diff(rows, MAPPING, ["title"], tasks_table, existing)
    assert [u.id for u in diff.to_update] == [1]
    assert diff.to_update[0].fields["status"] == "Closed"
    assert diff.duplicate_ignored_count == 1
    assert diff.to_create == []


def test_duplicates_claim_next_unclaimed_candidate(tasks_table):
    existing = _existing(
        (1, {"title": "Same", "points": 1.0}),
        (2, {"title": "Same", "points": 2.0}),
    )
    mapping = {"title": MAPPING["title"]}
    rows = [["Same"], ["Same"], ["Same"]]
    diff = compute_data_diff(rows, mapping, ["title"], tasks_table, existing)
    assert sorted(diff.unchanged_by_id) == [1, 2]
    assert diff.duplicate_ignored_count == 1
    assert diff.to_create == []


def test_no_existing_id_in_both_update_and_unchanged(tasks_table):
    existing = _existing(
        (1, {"title": "A", "status": "Open"}),
        (2, {"title": "B", "status": "Open"}),
    )
    rows = [["A", "Open"], ["B", "Closed"], ["A", "Closed"], ["C", "Open"]]
    diff = compute_data_diff(rows, MAPPING, ["title"], tasks_table, existing)
    updated = {u.id for u in diff.to_update}
    assert updated == {2}
    assert set(diff.unchanged_by_id) == {1}
    assert not updated & set(diff.unchanged_by_id)
    assert diff.duplicate_ignored_count == 1
    assert diff.to_create == [{"title": "C", "status": "Open", "points": None}]
    assert diff.num_rows_accounted == 4


def test_null_key_rows_are_created(tasks_table):
    existing = _existing((1, {"title": None, "status": "Open"}))
    diff = compute_data_diff([["", "Open", "1"]], MAPPING, ["title"], tasks_table, existing)
    assert len(diff.to_create) == 1
    assert diff.unchanged_by_id == {}


def test_composite_key_buckets_on_first_column(tasks_table):
    existing = _existing(
        (1, {"title": "A", "status": "Open", "points": 1.0}),
        (2, {"title": "A", "status": "Closed", "points": 1.0}),
    )
    diff = compute_data_diff([["A", "Closed", "2"]], MAPPING, ["title", "status"], tasks_table, existing)
    assert [u.id for u in diff.to_update] == [2]


def test_failures_grouped_per_column_including_empty_rows(tasks_table):
    rows = [["A", "Pending", "x"], ["", "Nope", ""], ["B", "Open", "1"]]
    diff = compute_data_diff(rows, MAPPING, [], tasks_table, [])
    assert diff.failed_conversions_by_column == {"status": ["Pending", "Nope"], "points": ["x"]}
    assert diff.num_failed_values == 3
    # 2 行目は全値 None のため create されない
    assert [r["title"] for r in diff.to_create] == ["A", "B"]


def test_diff_is_idempotent_against_applied_store(tasks_table, memory_store):
    first = compute_data_diff(ROWS, MAPPING, ["title"], tasks_table, memory_store.load_existing_rows(tasks_table))
    memory_store.create_rows(tasks_table, first.to_create)
    second = compute_data_diff(ROWS, MAPPING, ["title"], tasks_table, memory_store.load_existing_rows(tasks_table))
    assert second.to_create == []
    assert second.to_update == []
    assert len(second.unchanged_by_id) == 3


def test_link_columns_compare_by_name(tasks_table, memory_store):
    acme = memory_store.add_row("companies", {"name": "Acme"})
    row_id = memory_store.add_row("tasks", {"title": "A", "company": [acme]})
    linked = linked_primary_types_by_table_id(tasks_table, memory_store)
    mapping = {"title": MAPPING["title"], "company": ColumnMapping(enabled=True, source_index=1)}
    existing = memory_store.load_existing_rows(tasks_table)

    same = compute_data_diff([["A", "Acme"]], mapping, ["title"], tasks_table, existing,
                             linked_primary_types=linked)
    assert list(same.unchanged_by_id) == [row_id]

    changed = compute_data_diff([["A", "Acme, Globex"]], mapping, ["title"], tasks_table, existing,
                                linked_primary_types=linked)
    assert changed.to_update[0].fields["company"] == [LinkRef(name="Acme"), LinkRef(name="Globex")]

    cleared = compute_data_diff([["A", ""]], mapping, ["title"], tasks_table, existing,
                                linked_primary_types=linked)
    assert [u.id for u in cleared.to_update] == [row_id]


def test_unhashable_stored_key_values_do_not_break_bucketing(tasks_table):
    existing = _existing(
        (1, {"title": {"unexpected": "shape"}}),
        (2, {"title": "A", "status": "Open"}),
    )
    mapping = {"title": MAPPING["title"]}
    diff = compute_data_diff([["A"], ["B"]], mapping, ["title"], tasks_table, existing)
    assert list(diff.unchanged_by_id) == [2]
    assert diff.to_create == [{"title": "B"}]


def test_relative_date_time_is_a_failure_and_diff_settles():
    events = Table(
        id="events",
        name="Events",
        columns=(
            Column(id="k", name="K", type=ColumnType.SINGLE_LINE_TEXT),
            Column(id="at", name="At", type=ColumnType.DATE_TIME),
        ),
        primary_column_id="k",
    )
    store = InMemoryTableStore([events])
    mapping = {
        "k": ColumnMapping(enabled=True, source_index=0),
        "at": ColumnMapping(enabled=True, source_index=1),
    }
    rows = [["a", "now"]]
    first = compute_data_diff(rows, mapping, ["k"], events, store.load_existing_rows(events))
    assert first.to_create == [{"k": "a", "at": None}]
    assert first.failed_conversions_by_column == {"at": ["now"]}
    create_or_update_records(store, events, first)

    second = compute_data_diff(rows, mapping, ["k"], events, store.load_existing_rows(events))
    assert second.to_update == []
    assert second.to_create == []
    assert len(second.unchanged_by_id) == 1
