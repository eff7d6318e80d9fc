"""Bounded-parallelism runner for deferred coroutines."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_concurrency_limit(
    operations: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T]:
    """Run every operation exactly once with at most `limit` in flight.

    Returns results in submission order once all operations have settled.
    Siblings are never cancelled when one operation raises; callers are
    expected to catch their own failures, and any exception that still
    escapes is re-raised only after the whole set has finished.
    """

    if limit <= 0:
        raise ValueError(f"Concurrency limit must be > 0, got {limit}.")
    if not operations:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def _run_one(operation: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await operation()

    settled = await asyncio.gather(
        *(_run_one(operation) for operation in operations),
        return_exceptions=True,
    )
    errors = [item for item in settled if isinstance(item, BaseException)]
    if errors:
        logger.warning("%d of %d limited operations raised", len(errors), len(settled))
        raise errors[0]
    return list(settled)  # type: ignore[arg-type]
