from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for error logging.

Supports row=-1 as a sentinel value for file-level or table-level problems where
no single input row is responsible (e.g. a failed write chunk). ``column`` is
None when the problem is not tied to one column.
"""

__all__ = [
    "ERROR_TYPES",
    "ErrorRecord",
]

ERROR_TYPES = frozenset({
    "CONVERSION_FAILED",
    "LINK_UNRESOLVED",
    "STALE_ROW_RECREATED",
    "BATCH_WRITE_ERROR",
    "IMPORT_BLOCKED",
})


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: JSON filename being imported
        table: Target table id
        row: Row number (1-based, data rows only). -1 when unknown
        column: Target column id, or None
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable description
    """
    timestamp: str  # ISO8601 UTC
    file: str
    table: str
    row: int  # 行番号。不明な場合 -1 許容
    column: str | None
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(
        file: str,
        table: str,
        row: int,
        error_type: str,
        message: str,
        column: str | None = None,
    ) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            table=table,
            row=row,
            column=column,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
