from __future__ import annotations

import sys
from typing import Any, Callable

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress reporting: the touched/total counter and the tqdm display (TTY only).

ProgressCounter is what the link resolver and the batch executor talk to. It owns
the fixed total for one write run and forwards ``(touched, total)`` to an
``on_progress`` callback, never reporting a smaller ``touched`` than before.

ProgressTracker renders those callbacks as a single tqdm bar. In non-TTY
environments (CI, pipes) the bar is disabled to avoid ANSI control sequence spam.
"""

__all__ = [
    "ProgressCallback",
    "ProgressCounter",
    "ProgressTracker",
    "is_tty_enabled",
]

ProgressCallback = Callable[[int, int], None]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressCounter:
    def __init__(self, total: int, on_progress: ProgressCallback | None = None) -> None:
        self.total = total
        self.touched = 0
        self.on_progress = on_progress

    def advance(self, count: int = 1) -> None:
        if count < 0:
            raise ValueError("progress cannot move backwards")
        self.touched += count

    def report(self) -> None:
        # 同値の連続通知も抑止しない (チャンク毎に必ず通知)
        if self.on_progress is not None:
            self.on_progress(min(self.touched, self.total), self.total)

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(self.touched, self.total) / self.total


class ProgressTracker:
    """tqdm progress bar driven by ``(touched, total)`` callbacks."""

    def __init__(self, total: int = 0, *, description: str = "Importing records") -> None:
        self.total = total
        self.description = description
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit="record",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def update_to(self, touched: int, total: int) -> None:
        if not self.enabled or self.pbar is None:
            return
        if total != self.total:
            # link 作成分を含む総数は書き込み開始時に確定する
            self.total = total
            self.pbar.total = total
        self.pbar.n = touched
        self.pbar.refresh()

    def as_callback(self) -> ProgressCallback:
        return self.update_to

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
