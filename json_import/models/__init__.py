"""Domain models for the JSON -> table store importer."""

from .column import Collaborator, Column, ColumnType, LinkRef, Table
from .config_models import (
    ColumnMapping,
    DatabaseConfig,
    ImportConfig,
    ImportSettings,
    LimitsConfig,
)
from .diff_result import DiffResult, RecordUpdate
from .row_data import ExistingRow, ParsedData, RowProjection

__all__ = [
    # Schema models
    "Collaborator",
    "Column",
    "ColumnType",
    "LinkRef",
    "Table",
    # Configuration models
    "ColumnMapping",
    "DatabaseConfig",
    "ImportConfig",
    "ImportSettings",
    "LimitsConfig",
    # Processing models
    "DiffResult",
    "ExistingRow",
    "ParsedData",
    "RecordUpdate",
    "RowProjection",
]
