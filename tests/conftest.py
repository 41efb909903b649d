# Shared pytest fixtures
from __future__ import annotations
import json
import tempfile
from pathlib import Path

import pytest

from json_import.db.memory_store import InMemoryTableStore
from json_import.logging.init import reset_logging
from json_import.models.column import Collaborator, Column, ColumnType, Table
from json_import.models.row_data import ParsedData

PEOPLE = (
    Collaborator(email="alice@example.com", name="Alice"),
    Collaborator(email="bob@example.com", name="Bob"),
)


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _clean_logging():
    # テスト間で logger のハンドラ状態を持ち越さない
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
collaborators:
  - email: alice@example.com
    name: Alice
limits:
  batch_size: 2
tables:
  tasks:
    name: Tasks
    primary_column: title
    columns:
      title: {type: single_line_text, name: Title}
      status: {type: single_select, name: Status, choices: [Open, Closed]}
      points: {type: number, name: Points}
      company: {type: multiple_record_links, name: Company, linked_table: companies}
  companies:
    name: Companies
    primary_column: name
    columns:
      name: {type: single_line_text, name: Name}
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def sample_records() -> list[dict]:
    return [
        {"Title": "Write docs", "Status": "Open", "Points": 3, "Company": "Acme"},
        {"Title": "Fix bug", "Status": "closed", "Points": "5", "Company": "Acme, Globex"},
        {"Title": "Ship", "Status": "Open", "Points": 8, "Company": ""},
    ]


@pytest.fixture()
def write_json(temp_workdir: Path):
    def _write(data, name: str = "tasks.json") -> Path:
        path = temp_workdir / "data" / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture()
def companies_table() -> Table:
    return Table(
        id="companies",
        name="Companies",
        columns=(Column(id="name", name="Name", type=ColumnType.SINGLE_LINE_TEXT),),
        primary_column_id="name",
    )


@pytest.fixture()
def tasks_table() -> Table:
    return Table(
        id="tasks",
        name="Tasks",
        columns=(
            Column(id="title", name="Title", type=ColumnType.SINGLE_LINE_TEXT),
            Column(id="status", name="Status", type=ColumnType.SINGLE_SELECT, choices=("Open", "Closed")),
            Column(id="points", name="Points", type=ColumnType.NUMBER),
            Column(id="company", name="Company", type=ColumnType.MULTIPLE_RECORD_LINKS,
                   linked_table_id="companies"),
            Column(id="owner", name="Owner", type=ColumnType.SINGLE_COLLABORATOR, collaborators=PEOPLE),
            Column(id="ref", name="Ref", type=ColumnType.AUTO_NUMBER),
        ),
        primary_column_id="title",
    )


@pytest.fixture()
def memory_store(tasks_table: Table, companies_table: Table) -> InMemoryTableStore:
    return InMemoryTableStore([tasks_table, companies_table])


@pytest.fixture()
def parsed_tasks() -> ParsedData:
    return ParsedData(
        lines=[
            ["Title", "Status", "Points", "Company"],
            ["Write docs", "Open", "3", "Acme"],
            ["Fix bug", "closed", "5", "Acme, Globex"],
            ["Ship", "Open", "8", ""],
        ],
        source_name="tasks.json",
    )
