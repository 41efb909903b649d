from __future__ import annotations

from dataclasses import dataclass, field, replace

from .column import Collaborator, Table

"""Config dataclasses for the JSON -> table store importer.

ImportConfig is the static, file-backed configuration (database fallback,
store schema, limits). ImportSettings is the operator-editable state of one
import (column mapping, merge key, header / merge toggles); it is persisted by
``json_import.config.settings_store`` and passed around as a value.
"""

__all__ = [
    "ColumnMapping",
    "DatabaseConfig",
    "ImportConfig",
    "ImportSettings",
    "LimitsConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None
    port: int | None
    user: str | None
    password: str | None
    database: str | None
    dsn: str | None


@dataclass(frozen=True)
class LimitsConfig:
    max_rows_per_table: int = 50000
    max_rows_per_file: int = 15000
    batch_size: int = 50
    scheduler_budget_ms: int = 10


@dataclass(frozen=True)
class ColumnMapping:
    """Mapping of one target column to a source position in the parsed line."""
    enabled: bool
    source_index: int | None  # None = 未割当

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "source_index": self.source_index}


@dataclass(frozen=True)
class ImportSettings:
    """Operator choices for one target table."""
    column_mappings: dict[str, ColumnMapping] = field(default_factory=dict)
    merge_column_ids: tuple[str, ...] = ()
    first_line_headers: bool = True
    should_merge: bool = False

    def with_mapping(self, column_id: str, mapping: ColumnMapping) -> ImportSettings:
        mappings = dict(self.column_mappings)
        mappings[column_id] = mapping
        return replace(self, column_mappings=mappings)

    @property
    def effective_merge_column_ids(self) -> tuple[str, ...]:
        # merge トグル OFF の場合キーは無視 (全行 create 扱い)
        return self.merge_column_ids if self.should_merge else ()


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for the import process."""
    tables: dict[str, Table]
    database: DatabaseConfig
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    collaborators: tuple[Collaborator, ...] = ()
    settings_path: str = "config/settings.yml"
