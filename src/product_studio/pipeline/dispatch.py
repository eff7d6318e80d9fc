"""Fire-and-forget scheduling of task and batch runs inside one event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from product_studio.pipeline.runtime import PipelineRuntime

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Starts runs without awaiting them.

    The dispatcher keeps a strong reference to every scheduled asyncio task
    until it finishes, and logs failures from a done callback since no caller
    awaits the result. `drain()` waits for everything scheduled so far.
    """

    def __init__(self, runtime: PipelineRuntime) -> None:
        self._runtime = runtime
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch_task(self, task_id: str) -> asyncio.Task[Any]:
        return self._spawn(self._runtime.run_task(task_id), name=f"task:{task_id}")

    def dispatch_batch(self, batch_id: str) -> asyncio.Task[Any]:
        return self._spawn(self._runtime.run_batch(batch_id), name=f"batch:{batch_id}")

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("Dispatched %s", name)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background run %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.error(
                "Background run %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )
