"""Polling worker that drains pending batches and standalone tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from product_studio.pipeline.errors import PipelineError
from product_studio.pipeline.models import BatchStatus, TaskStatus
from product_studio.pipeline.runtime import PipelineRuntime

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.batches += other.batches
        self.idle_polls += other.idle_polls


class PipelineWorker:
    """Claims one pending unit of work at a time and runs it to a terminal state."""

    def __init__(
        self,
        runtime: PipelineRuntime,
        *,
        worker_id: str,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self.runtime = runtime
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = False

    def request_stop(self) -> None:
        self._stop_requested = True

    async def run_once(self) -> WorkerRunSummary:
        """Process at most one batch or standalone task."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        repository = self.runtime.repository
        batch = repository.claim_pending_batch(worker_id=self.worker_id)
        if batch is not None:
            summary.processed = 1
            summary.batches = 1
            try:
                result = await self.runtime.run_batch(batch.batch_id, owner=self.worker_id)
            except PipelineError as exc:
                logger.warning(
                    "Worker %s: batch %s failed: %s",
                    self.worker_id,
                    batch.batch_id,
                    exc,
                )
                summary.failed = 1
            else:
                if result.status == BatchStatus.COMPLETED:
                    summary.succeeded = 1
                else:
                    summary.failed = 1
            finally:
                repository.release_batch(batch.batch_id, owner=self.worker_id)
            return summary

        task = repository.claim_pending_task(worker_id=self.worker_id)
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        try:
            view = await self.runtime.run_task(task.task_id)
        finally:
            repository.release_task(task.task_id)
        if view.status == TaskStatus.COMPLETED:
            summary.succeeded = 1
        else:
            summary.failed = 1
        return summary

    async def run_loop(
        self,
        *,
        max_items: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Run until the queue stays idle for `max_idle_polls` polls or `max_items` is reached."""

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        while not self._stop_requested:
            if max_items is not None and aggregate.processed >= max_items:
                break
            summary = await self.run_once()
            aggregate.add(summary)
            if summary.processed == 0:
                consecutive_idle += 1
                if consecutive_idle >= max_idle_polls:
                    break
                await asyncio.sleep(self.poll_interval_seconds)
                continue
            consecutive_idle = 0
        return aggregate
