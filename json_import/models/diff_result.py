from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Diff result model.

A DiffResult is produced wholesale by the diff engine and consumed exactly once
by the batch executor. It is never patched in place: when the column mapping,
merge key or the existing-row snapshot changes, a new one is computed.
"""

__all__ = [
    "DiffResult",
    "RecordUpdate",
]


@dataclass
class RecordUpdate:
    id: Any
    fields: dict[str, Any]


@dataclass
class DiffResult:
    to_create: list[dict[str, Any]] = field(default_factory=list)
    to_update: list[RecordUpdate] = field(default_factory=list)
    unchanged_by_id: dict[Any, dict[str, Any]] = field(default_factory=dict)
    duplicate_ignored_count: int = 0
    failed_conversions_by_column: dict[str, list[Any]] = field(default_factory=dict)

    @property
    def num_rows_accounted(self) -> int:
        """Number of non-empty incoming rows classified by this diff."""
        return (
            len(self.to_create)
            + len(self.to_update)
            + len(self.unchanged_by_id)
            + self.duplicate_ignored_count
        )

    @property
    def num_failed_values(self) -> int:
        return sum(len(v) for v in self.failed_conversions_by_column.values())

    def add_failures(self, failures: dict[str, Any]) -> None:
        for column_id, raw_value in failures.items():
            self.failed_conversions_by_column.setdefault(column_id, []).append(raw_value)
