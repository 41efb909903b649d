from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.column import Collaborator, Column, ColumnType, Table
from ..models.config_models import DatabaseConfig, ImportConfig, LimitsConfig

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate against the bundled JSON schema (config_schema.json)
- Semantic checks the schema cannot express (primary column present, linked
  tables known, reserved column names)
- Build the Table models (collaborators are injected into person columns)
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")

# PostgreSQL 側で行 id 列として予約
RESERVED_COLUMN_IDS = frozenset({"id"})

_PERSON_TYPES = frozenset({ColumnType.SINGLE_COLLABORATOR, ColumnType.MULTIPLE_COLLABORATORS})


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {location})" if location else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def _build_table(
    table_id: str,
    raw: dict[str, Any],
    table_ids: set[str],
    collaborators: tuple[Collaborator, ...],
) -> Table:
    columns: list[Column] = []
    for column_id, col_raw in raw["columns"].items():
        if column_id in RESERVED_COLUMN_IDS:
            raise ConfigError(f"tables.{table_id}.columns.{column_id}: column id '{column_id}' is reserved")
        column_type = ColumnType(col_raw["type"])
        linked = col_raw.get("linked_table")
        if column_type is ColumnType.MULTIPLE_RECORD_LINKS:
            if not linked:
                raise ConfigError(f"tables.{table_id}.columns.{column_id}: linked_table is required for links")
            if linked not in table_ids:
                raise ConfigError(f"tables.{table_id}.columns.{column_id}: unknown linked_table '{linked}'")
        elif linked:
            raise ConfigError(f"tables.{table_id}.columns.{column_id}: linked_table only applies to links")
        columns.append(Column(
            id=column_id,
            name=col_raw.get("name", column_id),
            type=column_type,
            linked_table_id=linked,
            choices=tuple(col_raw.get("choices", ())),
            max_rating=col_raw.get("max", 5),
            collaborators=collaborators if column_type in _PERSON_TYPES else (),
            computed=bool(col_raw.get("computed", False)),
        ))
    primary = raw["primary_column"]
    if primary not in raw["columns"]:
        raise ConfigError(f"tables.{table_id}: primary_column '{primary}' is not one of its columns")
    return Table(id=table_id, name=raw.get("name", table_id), columns=tuple(columns), primary_column_id=primary)


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    collaborators = tuple(
        Collaborator(email=c["email"], name=c.get("name")) for c in data.get("collaborators", [])
    )
    limits = LimitsConfig(**(data.get("limits") or {}))
    table_ids = set(data["tables"])
    tables = {
        table_id: _build_table(table_id, raw, table_ids, collaborators)
        for table_id, raw in data["tables"].items()
    }
    return ImportConfig(
        tables=tables,
        database=db,
        limits=limits,
        collaborators=collaborators,
        settings_path=data.get("settings_path", "config/settings.yml"),
    )
