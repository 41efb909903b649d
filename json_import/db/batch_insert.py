from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT / UPDATE helpers on top of psycopg2.extras.execute_values.

One call = one write chunk. Callers size the chunks (the batch executor uses 50
rows); ``page_size`` only controls how execute_values splits the statement.
Any driver error is wrapped in BatchInsertError with the original as __cause__.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
    "batch_update",
    "quote_ident",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch statement."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _timed(
    fn: Callable[[], Any],
    batch_size: int,
    metrics_callback: Callable[[BatchMetrics], None] | None,
) -> Any:
    start_time = time.time()
    try:
        return fn()
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(
                batch_size=batch_size,
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            ))


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: Sequence[str] | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
    template: str | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (未クオート)
    columns: 挿入列
    rows: 行シーケンス (columns と同順)
    returning: RETURNING で取得する列 (新規 id 取得用途)。None なら RETURNING なし
    page_size: execute_values の page_size (性能調整)
    metrics_callback: receives BatchMetrics for timing instrumentation.
        Not invoked when ``rows`` is empty (the function returns early).
    template: execute_values の VALUES テンプレート (型キャスト付与用)
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(quote_ident(c) for c in columns)
    sql = f"INSERT INTO {quote_ident(table)} ({cols_sql}) VALUES %s"
    if returning:
        sql += " RETURNING " + ",".join(quote_ident(c) for c in returning)

    returned = _timed(
        lambda: execute_values(
            cursor, sql, rows_list, template=template, page_size=page_size, fetch=bool(returning)
        ),
        len(rows_list),
        metrics_callback,
    )
    return InsertResult(
        inserted_rows=len(rows_list),
        returned_values=list(returned) if returning else None,
    )


def batch_update(
    cursor: Any,
    table: str,
    key_column: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    casts: Sequence[str],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> int:
    """UPDATE ... FROM (VALUES %s) in one statement.

    Each row is ``(key, *values)``; ``casts`` gives the SQL type for the key and
    every column, in the same order, so the VALUES list is typed correctly.
    """
    rows_list = list(rows)
    if not rows_list:
        return 0
    if len(casts) != len(columns) + 1:
        raise ValueError("casts must cover the key column and every updated column")

    all_columns = [key_column, *columns]
    alias_cols = ",".join(quote_ident(c) for c in all_columns)
    set_sql = ",".join(f"{quote_ident(c)} = v.{quote_ident(c)}" for c in columns)
    sql = (
        f"UPDATE {quote_ident(table)} AS t SET {set_sql} "
        f"FROM (VALUES %s) AS v({alias_cols}) "
        f"WHERE t.{quote_ident(key_column)} = v.{quote_ident(key_column)}"
    )
    template = "(" + ",".join(f"%s::{cast}" for cast in casts) + ")"
    _timed(
        lambda: execute_values(cursor, sql, rows_list, template=template, page_size=page_size),
        len(rows_list),
        metrics_callback,
    )
    return len(rows_list)
