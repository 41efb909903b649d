from __future__ import annotations

import pytest

from json_import.services.scheduler import ChunkedScheduler, DiffGeneration


class FakeClock:
    """Advances by ``step`` on every read."""

    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def test_for_each_processes_in_order_and_yields_between_slices():
    seen: list[int] = []
    hooks: list[int] = []
    scheduler = ChunkedScheduler(budget_seconds=0.010, yield_hook=lambda: hooks.append(len(seen)),
                                 clock=FakeClock(0.006))
    scheduler.for_each(range(5), lambda item, index: seen.append(item))
    assert seen == [0, 1, 2, 3, 4]
    # 各 yield 時点で処理済み件数が単調増加
    assert hooks == sorted(hooks)
    assert hooks and hooks[0] >= 1
    assert scheduler.slices_run == len(hooks) + 1


def test_large_budget_runs_single_slice():
    hooks: list[None] = []
    scheduler = ChunkedScheduler(budget_seconds=60, yield_hook=lambda: hooks.append(None))
    assert scheduler.map([1, 2, 3], lambda item, index: item * 10 + index) == [10, 21, 32]
    assert hooks == []
    assert scheduler.slices_run == 1


def test_reentry_is_rejected_and_state_resets_after_error():
    scheduler = ChunkedScheduler()

    def nested(item, index):
        scheduler.for_each([1], lambda i, j: None)

    with pytest.raises(RuntimeError, match="already in flight"):
        scheduler.for_each([1], nested)

    def boom(item, index):
        raise ValueError("boom")

    with pytest.raises(ValueError):
        scheduler.for_each([1], boom)
    # 例外後も再利用できる
    assert scheduler.map([1], lambda i, j: i) == [1]


def test_invalid_budget():
    with pytest.raises(ValueError):
        ChunkedScheduler(budget_seconds=0)


def test_diff_generation():
    gen = DiffGeneration()
    first = gen.issue()
    assert gen.is_current(first)
    second = gen.issue()
    assert second > first
    assert not gen.is_current(first)
    assert gen.current == second
