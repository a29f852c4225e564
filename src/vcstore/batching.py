"""Bounded-concurrency runner for document store operations.

Wraps asyncio.Semaphore to limit concurrent calls against the store
connection. Preserves input order in results.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from vcstore.config import DEFAULT_CONCURRENCY
from vcstore.errors import BatchError, is_conflict_error
from vcstore.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

log = get_logger(__name__)

async def run_ops(
    ops: Sequence[Callable[[], Awaitable[Any]]],
    concurrency: int = DEFAULT_CONCURRENCY,
    *,
    stop_on_error: bool = True,
) -> list[Any]:
    """Run document operations concurrently with bounded parallelism.

    Args:
        ops: Zero-argument async callables, one per operation.
        concurrency: Maximum operations in flight at once.
        stop_on_error: If True (default), cancel remaining operations on
            the first failure and re-raise it. If False, run every
            operation and report all failures together.

    Returns:
        Results in input order.

    Raises:
        BatchError: When ``stop_on_error`` is False and any operation
            failed, or when several in-flight operations failed before
            cancellation took effect.
        Exception: The first failure when ``stop_on_error`` is True and
            only one operation failed.
    """
    if not ops:
        return []

    semaphore = asyncio.Semaphore(max(1, concurrency))
    results: list[Any] = [None] * len(ops)
    errors: list[tuple[int, Exception]] = []

    async def _run_one(idx: int, op: Callable[[], Awaitable[Any]]) -> None:
        async with semaphore:
            try:
                results[idx] = await op()
            except Exception as e:
                errors.append((idx, e))
                log.debug("batch_op_failed", index=idx, error=str(e))
                if stop_on_error:
                    raise

    tasks = [asyncio.create_task(_run_one(i, op)) for i, op in enumerate(ops)]

    if stop_on_error:
        try:
            await asyncio.gather(*tasks)
        except Exception:
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
    else:
        await asyncio.gather(*tasks, return_exceptions=True)

    log.debug(
        "batch_complete",
        total_ops=len(ops),
        succeeded=len(ops) - len(errors),
        failed=len(errors),
    )

    if not errors:
        return results
    errors.sort(key=lambda item: item[0])
    if stop_on_error and len(errors) == 1:
        raise errors[0][1]
    raise BatchError(errors=errors, total=len(ops))


def collapse_conflicts(error: Exception) -> Exception:
    """Reduce an all-conflict ``BatchError`` to its first conflict.

    A batch that failed only because of stale writes is retried as a
    whole by the caller, so one representative conflict is enough. Any
    other error is returned unchanged.
    """
    if isinstance(error, BatchError) and error.errors:
        if all(is_conflict_error(e) for _, e in error.errors):
            return error.errors[0][1]
    return error
