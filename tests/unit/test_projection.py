from __future__ import annotations

from json_import.conversion.compatibility import linked_primary_types_by_table_id
from json_import.models.column import LinkRef
from json_import.models.config_models import ColumnMapping
from json_import.services.projection import mapped_columns, mappings_matching_headers, project_row


def _linked(memory_store, table):
    return linked_primary_types_by_table_id(table, memory_store)


def test_project_row_converts_mapped_columns(tasks_table, memory_store):
    mapping = {
        "title": ColumnMapping(enabled=True, source_index=0),
        "points": ColumnMapping(enabled=True, source_index=2),
        "company": ColumnMapping(enabled=True, source_index=3),
    }
    projection = project_row(
        ["Write docs", "Open", "3", "Acme"], mapping, tasks_table.columns, _linked(memory_store, tasks_table)
    )
    assert projection.values == {"title": "Write docs", "points": 3.0, "company": [LinkRef(name="Acme")]}
    assert projection.failures == {}
    assert not projection.is_empty


def test_disabled_unmapped_and_unsupported_columns_are_skipped(tasks_table, memory_store):
    mapping = {
        "title": ColumnMapping(enabled=False, source_index=0),
        "status": ColumnMapping(enabled=True, source_index=None),
        "ref": ColumnMapping(enabled=True, source_index=1),
        "points": ColumnMapping(enabled=True, source_index=2),
    }
    columns = mapped_columns(mapping, tasks_table.columns, _linked(memory_store, tasks_table))
    assert [(c.id, i) for c, i in columns] == [("points", 2)]


def test_short_row_reads_as_empty(tasks_table):
    mapping = {"points": ColumnMapping(enabled=True, source_index=5)}
    projection = project_row(["x"], mapping, tasks_table.columns)
    assert projection.values == {"points": None}
    assert projection.failures == {}
    assert projection.is_empty


def test_failed_conversion_recorded(tasks_table):
    mapping = {
        "status": ColumnMapping(enabled=True, source_index=0),
        "points": ColumnMapping(enabled=True, source_index=1),
    }
    projection = project_row(["Pending", "lots"], mapping, tasks_table.columns)
    assert projection.values == {"status": None, "points": None}
    assert projection.failures == {"status": "Pending", "points": "lots"}


def test_malformed_link_cell_is_a_failure(tasks_table, memory_store):
    mapping = {"company": ColumnMapping(enabled=True, source_index=0)}
    projection = project_row(['"Acme, Globex'], mapping, tasks_table.columns, _linked(memory_store, tasks_table))
    assert projection.values == {"company": None}
    assert projection.failures == {"company": '"Acme, Globex'}


def test_mappings_matching_headers_first_match_wins(tasks_table, memory_store):
    headers = ["points", " TITLE ", "Title", "Ref", "Company"]
    result = mappings_matching_headers(headers, tasks_table, _linked(memory_store, tasks_table))
    assert result == {
        "title": ColumnMapping(enabled=True, source_index=1),
        "points": ColumnMapping(enabled=True, source_index=0),
        "company": ColumnMapping(enabled=True, source_index=4),
    }
