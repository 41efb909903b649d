from __future__ import annotations

from ..models.diff_result import DiffResult
from ..models.processing_result import ImportResult

"""SUMMARY line and review status rendering."""

__all__ = [
    "describe_diff",
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Integers without a fraction, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return str(value)


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line (without the log label).

    Format:
        created=N updated=N unchanged=N duplicates=N linked_created=N
        failed_values=N elapsed_sec=X throughput_rps=Y

    Examples:
        >>> r = ImportResult(table_id="tasks", created=3, updated=1, unchanged=2,
        ...     duplicates_ignored=0, linked_rows_created=1, failed_values=0,
        ...     elapsed_seconds=2.0, throughput_rows_per_sec=2.0)
        >>> render_summary_line(r)
        'table=tasks created=3 updated=1 unchanged=2 duplicates=0 linked_created=1 failed_values=0 elapsed_sec=2 throughput_rps=2'
    """
    line = (
        f"table={result.table_id} "
        f"created={result.created} "
        f"updated={result.updated} "
        f"unchanged={result.unchanged} "
        f"duplicates={result.duplicates_ignored} "
        f"linked_created={result.linked_rows_created} "
        f"failed_values={result.failed_values} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_rps={format_number(result.throughput_rows_per_sec)}"
    )
    if result.dry_run:
        line += " dry_run=1"
    return line


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def describe_diff(diff: DiffResult, remaining_rows: int | None = None) -> str:
    """Operator facing one-liner describing what an import would do."""
    if remaining_rows is not None and len(diff.to_create) > remaining_rows:
        return "Table record limit exceeded."
    parts = []
    if diff.to_create:
        parts.append(f"{_plural(len(diff.to_create), 'record')} will be created.")
    if diff.to_update:
        parts.append(f"{_plural(len(diff.to_update), 'record')} will be updated.")
    if diff.unchanged_by_id:
        parts.append(f"{_plural(len(diff.unchanged_by_id), 'record')} didn't change.")
    if diff.duplicate_ignored_count:
        parts.append(
            f"{_plural(diff.duplicate_ignored_count, 'row')} ignored because an earlier row matched the same record."
        )
    return " ".join(parts) if parts else "Nothing to import."
