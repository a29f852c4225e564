"""Tests for the batching module."""

from __future__ import annotations

import asyncio
from functools import partial

import pytest

from vcstore.batching import collapse_conflicts, run_ops
from vcstore.errors import BatchError, DuplicateError, InvalidStateError


async def _value(value: int, delay: float = 0.0) -> int:
    await asyncio.sleep(delay)
    return value


async def _fail(exc: Exception, delay: float = 0.0) -> int:
    await asyncio.sleep(delay)
    raise exc


@pytest.mark.asyncio
async def test_run_ops_empty_list() -> None:
    """Empty input returns empty results."""
    assert await run_ops([]) == []


@pytest.mark.asyncio
async def test_run_ops_preserves_order() -> None:
    """Results are in input order regardless of completion order."""
    completion_order: list[int] = []

    async def _delayed(idx: int, delay: float) -> int:
        await asyncio.sleep(delay)
        completion_order.append(idx)
        return idx * 10

    ops = [partial(_delayed, 0, 0.03), partial(_delayed, 1, 0.02), partial(_delayed, 2, 0.01)]
    results = await run_ops(ops, concurrency=3)

    assert results == [0, 10, 20]
    assert completion_order == [2, 1, 0]


@pytest.mark.asyncio
async def test_run_ops_respects_concurrency() -> None:
    """Semaphore limits concurrent operations."""
    max_concurrent = 0
    current = 0

    async def _track(item: int) -> int:
        nonlocal max_concurrent, current
        current += 1
        max_concurrent = max(max_concurrent, current)
        await asyncio.sleep(0.01)
        current -= 1
        return item

    results = await run_ops([partial(_track, i) for i in range(8)], concurrency=3)

    assert results == list(range(8))
    assert max_concurrent <= 3


@pytest.mark.asyncio
async def test_stop_on_error_reraises_single_failure() -> None:
    """A single failure propagates unchanged and later work is cancelled."""
    started: list[int] = []

    async def _op(item: int) -> int:
        started.append(item)
        if item == 1:
            raise ValueError("boom")
        await asyncio.sleep(0.05)
        return item

    with pytest.raises(ValueError, match="boom"):
        await run_ops([partial(_op, i) for i in range(4)], concurrency=1)

    assert 3 not in started


@pytest.mark.asyncio
async def test_stop_on_error_aggregates_in_flight_failures() -> None:
    """Failures that land before cancellation are aggregated."""
    ops = [
        partial(_fail, ValueError("first")),
        partial(_fail, ValueError("second")),
    ]

    with pytest.raises((BatchError, ValueError)):
        await run_ops(ops, concurrency=2)


@pytest.mark.asyncio
async def test_best_effort_runs_everything() -> None:
    """stop_on_error=False completes all ops and reports every failure."""
    done: list[int] = []

    async def _op(item: int) -> int:
        await asyncio.sleep(0)
        if item % 2:
            raise ValueError(f"odd {item}")
        done.append(item)
        return item

    with pytest.raises(BatchError) as exc_info:
        await run_ops([partial(_op, i) for i in range(5)], stop_on_error=False)

    assert sorted(done) == [0, 2, 4]
    assert [idx for idx, _ in exc_info.value.errors] == [1, 3]
    assert exc_info.value.total == 5


@pytest.mark.asyncio
async def test_best_effort_single_failure_is_still_aggregated() -> None:
    """In best-effort mode even one failure is reported as a BatchError."""
    with pytest.raises(BatchError):
        await run_ops([partial(_value, 1), partial(_fail, ValueError("x"))], stop_on_error=False)


class TestCollapseConflicts:
    """Tests for collapse_conflicts."""

    def test_all_conflicts_collapse_to_first(self) -> None:
        first = InvalidStateError("stale a")
        error = BatchError(errors=[(0, first), (2, DuplicateError("dup"))], total=3)
        assert collapse_conflicts(error) is first

    def test_mixed_failures_are_kept(self) -> None:
        error = BatchError(errors=[(0, InvalidStateError("stale")), (1, ValueError("x"))], total=2)
        assert collapse_conflicts(error) is error

    def test_non_batch_error_passes_through(self) -> None:
        error = ValueError("x")
        assert collapse_conflicts(error) is error
