from __future__ import annotations

import time
from typing import Any, Callable, Iterable, TypeVar

"""Cooperative chunked iteration and the diff generation counter.

ChunkedScheduler runs a callback over a sequence in time-budgeted slices. After
each slice it calls ``yield_hook`` so the host can process other work (redraw a
progress bar, accept operator input that supersedes the running diff). Slices
never overlap and items are always processed in order.

DiffGeneration is the staleness guard: a consumer issues a generation before
starting a diff and commits the result only while that generation is still the
latest one.
"""

T = TypeVar("T")
R = TypeVar("R")

__all__ = [
    "ChunkedScheduler",
    "DiffGeneration",
]


class ChunkedScheduler:
    def __init__(
        self,
        budget_seconds: float = 0.010,
        yield_hook: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if budget_seconds <= 0:
            raise ValueError("budget_seconds must be positive")
        self.budget_seconds = budget_seconds
        self.yield_hook = yield_hook
        self.clock = clock
        self.slices_run = 0
        self._running = False

    def for_each(self, items: Iterable[T], callback: Callable[[T, int], Any]) -> None:
        """Call ``callback(item, index)`` for each item, yielding between slices.

        At least one item is processed per slice. Exceptions from the callback
        propagate after the scheduler state is reset.
        """
        if self._running:
            raise RuntimeError("scheduler slice already in flight")
        self._running = True
        try:
            slice_start = self.clock()
            processed_in_slice = 0
            for index, item in enumerate(items):
                if processed_in_slice and self.clock() - slice_start >= self.budget_seconds:
                    self._end_slice()
                    slice_start = self.clock()
                    processed_in_slice = 0
                callback(item, index)
                processed_in_slice += 1
            if processed_in_slice:
                self.slices_run += 1
        finally:
            self._running = False

    def map(self, items: Iterable[T], callback: Callable[[T, int], R]) -> list[R]:
        out: list[R] = []
        self.for_each(items, lambda item, index: out.append(callback(item, index)))
        return out

    def _end_slice(self) -> None:
        self.slices_run += 1
        if self.yield_hook is not None:
            self.yield_hook()


class DiffGeneration:
    """Monotonically increasing request counter."""

    def __init__(self) -> None:
        self._current = 0

    def issue(self) -> int:
        self._current += 1
        return self._current

    @property
    def current(self) -> int:
        return self._current

    def is_current(self, generation: int) -> bool:
        return generation == self._current
