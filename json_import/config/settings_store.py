from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from ..conversion.compatibility import filter_deleted_or_unsupported
from ..models.column import ColumnType, Table
from ..models.config_models import ColumnMapping, ImportSettings
from .loader import ConfigError

"""Persisted operator settings (config/settings.yml).

Layout::

    schema_version: 2
    table_id: tasks
    first_line_headers: true
    should_merge: false
    column_mappings_by_table_id:
      tasks:
        title: {enabled: true, source_index: 0}
    merge_column_ids_by_table_id:
      tasks: [title]

Files written before schema version 2 used incompatible mapping formats; their
mappings are wiped on load instead of migrated. Column ids of deleted or no
longer importable columns are pruned on every read.
"""

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

__all__ = [
    "SCHEMA_VERSION",
    "SettingsStore",
]


class SettingsStore:
    def __init__(self, path: Path, data: dict[str, Any] | None = None) -> None:
        self.path = path
        self._data: dict[str, Any] = data if data is not None else {}

    @classmethod
    def load(cls, path: Path) -> SettingsStore:
        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"invalid settings yaml: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"settings root must be a mapping: {path}")
        store = cls(path, data)
        stored_version = store._stored_version()
        if not store.read_only and stored_version < SCHEMA_VERSION:
            if data.get("column_mappings_by_table_id"):
                logger.info("settings schema v%s is obsolete, column mappings reset", stored_version)
            store._data["schema_version"] = SCHEMA_VERSION
            store._data.pop("column_mappings_by_table_id", None)
        return store

    @property
    def read_only(self) -> bool:
        if self.path.exists():
            return not os.access(self.path, os.W_OK)
        parent = self.path.parent
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        return not os.access(parent, os.W_OK)

    def is_schema_version_out_of_date(self) -> bool:
        """True when the file was written by a newer version of this tool."""
        return self._stored_version() > SCHEMA_VERSION

    def _stored_version(self) -> int:
        try:
            return int(self._data.get("schema_version") or 0)
        except (TypeError, ValueError):
            return 0

    def save(self) -> bool:
        if self.read_only:
            logger.warning("settings not saved (read only): %s", self.path)
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            yaml.safe_dump(self._data, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )
        return True

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    # --- global values ---

    @property
    def table_id(self) -> str | None:
        return self._data.get("table_id")

    @table_id.setter
    def table_id(self, table_id: str | None) -> None:
        self._data["table_id"] = table_id

    @property
    def first_line_headers(self) -> bool:
        value = self._data.get("first_line_headers")
        return True if value is None else bool(value)

    @first_line_headers.setter
    def first_line_headers(self, value: bool) -> None:
        self._data["first_line_headers"] = bool(value)

    @property
    def should_merge(self) -> bool:
        return bool(self._data.get("should_merge", False))

    @should_merge.setter
    def should_merge(self, value: bool) -> None:
        self._data["should_merge"] = bool(value)

    # --- per table values ---

    def get_column_mappings(
        self, table: Table, linked_primary_types: dict[str, ColumnType] | None = None
    ) -> dict[str, ColumnMapping]:
        raw = (self._data.get("column_mappings_by_table_id") or {}).get(table.id) or {}
        if not isinstance(raw, dict):
            raw = {}
        valid = filter_deleted_or_unsupported(raw.keys(), table, linked_primary_types)
        mappings: dict[str, ColumnMapping] = {}
        for column_id in valid:
            entry = raw[column_id]
            if not isinstance(entry, dict):
                # v2 より前の形式 (読み取り専用ファイルでは消せない)
                continue
            index = entry.get("source_index")
            mappings[column_id] = ColumnMapping(
                enabled=bool(entry.get("enabled", False)),
                source_index=int(index) if index is not None else None,
            )
        return mappings

    def set_column_mappings(self, table_id: str, mappings: dict[str, ColumnMapping]) -> None:
        by_table = self._data.setdefault("column_mappings_by_table_id", {})
        by_table[table_id] = {column_id: m.to_dict() for column_id, m in mappings.items()}

    def get_merge_column_ids(
        self, table: Table, linked_primary_types: dict[str, ColumnType] | None = None
    ) -> list[str]:
        raw = (self._data.get("merge_column_ids_by_table_id") or {}).get(table.id) or []
        return filter_deleted_or_unsupported(raw, table, linked_primary_types)

    def set_merge_column_ids(self, table_id: str, column_ids: list[str]) -> None:
        by_table = self._data.setdefault("merge_column_ids_by_table_id", {})
        by_table[table_id] = list(column_ids)

    # --- value object bridge ---

    def settings_for(
        self, table: Table, linked_primary_types: dict[str, ColumnType] | None = None
    ) -> ImportSettings:
        return ImportSettings(
            column_mappings=self.get_column_mappings(table, linked_primary_types),
            merge_column_ids=tuple(self.get_merge_column_ids(table, linked_primary_types)),
            first_line_headers=self.first_line_headers,
            should_merge=self.should_merge,
        )

    def remember(self, table_id: str, settings: ImportSettings) -> None:
        self.table_id = table_id
        self.first_line_headers = settings.first_line_headers
        self.should_merge = settings.should_merge
        self.set_column_mappings(table_id, settings.column_mappings)
        self.set_merge_column_ids(table_id, list(settings.merge_column_ids))
