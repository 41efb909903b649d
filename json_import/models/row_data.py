from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Row-level models: parsed input, existing store rows, per-row projections."""

__all__ = [
    "ExistingRow",
    "ParsedData",
    "RowProjection",
]


@dataclass(frozen=True)
class ParsedData:
    """Header + value lines produced by preprocessing a JSON document.

    ``lines[0]`` is either the header line or the first data line depending on
    the operator's first-line-as-headers choice; the split happens later.
    """
    lines: list[list[str]]
    source_name: str = "<memory>"  # エラーログの file 欄に使う

    @property
    def first_line(self) -> list[str]:
        return self.lines[0] if self.lines else []

    def __len__(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class ExistingRow:
    """Opaque row handle plus its current typed values, keyed by column id."""
    id: Any
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, column_id: str) -> Any:
        return self.values.get(column_id)


@dataclass(frozen=True)
class RowProjection:
    """Typed values for one incoming row plus the raw values that failed to convert."""
    values: dict[str, Any]
    failures: dict[str, Any]

    @property
    def is_empty(self) -> bool:
        # 全値が None / 空リストの行は create にも update にもならない
        for value in self.values.values():
            if value is None:
                continue
            if isinstance(value, (list, tuple)) and len(value) == 0:
                continue
            return False
        return True
