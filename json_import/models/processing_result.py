from __future__ import annotations

import statistics
from dataclasses import dataclass

"""Processing result models: the per-run ImportResult and batch timing helper."""

__all__ = [
    "BatchStatsAccumulator",
    "ImportResult",
]


@dataclass(frozen=True)
class ImportResult:
    """Aggregated results of one import run; rendered as the SUMMARY line."""
    table_id: str
    created: int  # 新規作成行 (stale 再作成を含む)
    updated: int
    unchanged: int
    duplicates_ignored: int
    linked_rows_created: int  # link 先テーブルに作成した行
    failed_values: int  # 変換失敗セル数
    elapsed_seconds: float
    throughput_rows_per_sec: float  # (created + updated) / elapsed
    dry_run: bool = False
    partial_failure: bool = False
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0


class BatchStatsAccumulator:
    """Collects individual write-chunk timings and calculates summary statistics."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Return (total_batches, avg_batch_seconds, p95_batch_seconds)."""
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 20 分位の 19 番目 = p95
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
