"""Batch orchestrator: one shared style analysis fanned out to many child tasks."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from uuid import uuid4

from product_studio.pipeline.errors import BatchBusyError, PipelineError, SharedAnalysisError
from product_studio.pipeline.executor import StepExecutor
from product_studio.pipeline.ledger import CostLedger
from product_studio.pipeline.limiter import run_with_concurrency_limit
from product_studio.pipeline.models import (
    BatchStatus,
    BatchTaskView,
    GenerationMode,
    Stage,
    StyleAnalysis,
    TaskStatus,
    TaskView,
)
from product_studio.pipeline.repository import PipelineRepository
from product_studio.pipeline.state_machine import TaskStateMachine

logger = logging.getLogger(__name__)

DEFAULT_BATCH_CONCURRENCY = 3


class BatchOrchestrator:
    """Runs and selectively retries the children of one batch.

    In reference mode the style analysis is computed once per batch, stored on
    the batch record and only ever read afterwards; children start at stage 2.
    Template-mode children run every stage themselves. A child failure is
    contained at the child boundary; only batch-scope errors propagate.
    """

    def __init__(
        self,
        repository: PipelineRepository,
        state_machine: TaskStateMachine,
        executor: StepExecutor,
        ledger: CostLedger,
        *,
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self._executor = executor
        self._ledger = ledger
        self._concurrency = concurrency

    async def run(self, batch_id: str, *, owner: str | None = None) -> BatchTaskView:
        """Drive every non-completed child; safe to call again on the same batch.

        The run holds the batch claim throughout. `owner` is the claim a worker
        already took; without it a one-off claim is taken and dropped here.
        """

        token = self._acquire(batch_id, owner)
        try:
            return await self._run_claimed(batch_id)
        finally:
            if owner is None:
                self._repository.release_batch(batch_id, owner=token)

    async def retry_failed(self, batch_id: str, *, owner: str | None = None) -> BatchTaskView:
        """Resume only the children that are `failed` right now."""

        token = self._acquire(batch_id, owner)
        try:
            return await self._retry_claimed(batch_id)
        finally:
            if owner is None:
                self._repository.release_batch(batch_id, owner=token)

    def _acquire(self, batch_id: str, owner: str | None) -> str:
        token = owner or f"run-{uuid4().hex[:12]}"
        if not self._repository.acquire_batch(batch_id, owner=token):
            logger.warning("Batch %s: refused, another run holds the claim", batch_id)
            raise BatchBusyError(batch_id)
        return token

    async def _run_claimed(self, batch_id: str) -> BatchTaskView:
        batch = self._repository.require_batch(batch_id)
        children = self._repository.list_batch_children(batch_id)
        self._repository.set_batch_status(batch_id, BatchStatus.PROCESSING)
        logger.info("Batch %s: running %d children", batch_id, len(children))
        try:
            shared = await self._ensure_shared_analysis(batch, children)
            start_stage = batch.min_start_stage
            pending = [child for child in children if child.status != TaskStatus.COMPLETED]
            await self._run_children(
                batch_id,
                [(child, start_stage) for child in pending],
                shared,
            )
        except Exception:
            logger.exception("Batch %s failed at batch scope", batch_id)
            self._repository.set_batch_status(batch_id, BatchStatus.FAILED)
            raise
        return self._repository.recompute_batch_aggregate(batch_id)

    async def _retry_claimed(self, batch_id: str) -> BatchTaskView:
        batch = self._repository.require_batch(batch_id)
        failed = self._repository.list_batch_children(batch_id, statuses={TaskStatus.FAILED})
        if not failed:
            logger.info("Batch %s: no failed children to retry", batch_id)
            return batch
        shared = batch.shared_analysis
        if batch.generation_mode == GenerationMode.REFERENCE and shared is None:
            raise SharedAnalysisError(batch_id, "no stored shared analysis to resume from")

        minimum = batch.min_start_stage
        plan = [(child, max(child.failed_step or minimum, minimum)) for child in failed]
        self._repository.set_batch_status(batch_id, BatchStatus.PROCESSING)
        logger.info("Batch %s: retrying %d failed children", batch_id, len(plan))
        try:
            await self._run_children(batch_id, plan, shared)
        except Exception:
            logger.exception("Batch %s retry failed at batch scope", batch_id)
            self._repository.set_batch_status(batch_id, BatchStatus.FAILED)
            raise
        return self._repository.recompute_batch_aggregate(batch_id)

    async def _ensure_shared_analysis(
        self,
        batch: BatchTaskView,
        children: list[TaskView],
    ) -> StyleAnalysis | None:
        if batch.generation_mode != GenerationMode.REFERENCE:
            return None
        if batch.shared_analysis is not None:
            logger.info("Batch %s: reusing stored shared analysis", batch.batch_id)
            return batch.shared_analysis
        if not children:
            raise SharedAnalysisError(batch.batch_id, "batch has no children")
        try:
            outcome = await self._executor.analyze_style_source(
                generation_mode=batch.generation_mode,
                reference_image_path=batch.reference_image_path,
                style_template_id=batch.style_template_id,
            )
        except Exception as exc:
            raise SharedAnalysisError(batch.batch_id, str(exc)) from exc
        stored, written = self._repository.attach_shared_analysis(batch.batch_id, outcome.output)
        if not written:
            logger.warning("Batch %s: shared analysis already stored, using it", batch.batch_id)
        # the first child carries the cost of the shared call
        await self._ledger.record_calls(
            children[0].task_id,
            int(Stage.REFERENCE_ANALYSIS),
            outcome.calls,
        )
        return stored

    async def _run_children(
        self,
        batch_id: str,
        plan: list[tuple[TaskView, int]],
        shared: StyleAnalysis | None,
    ) -> None:
        operations: list[Callable[[], Awaitable[None]]] = [
            self._child_operation(batch_id, child, start_stage, shared)
            for child, start_stage in plan
        ]
        await run_with_concurrency_limit(operations, self._concurrency)

    def _child_operation(
        self,
        batch_id: str,
        child: TaskView,
        start_stage: int,
        shared: StyleAnalysis | None,
    ) -> Callable[[], Awaitable[None]]:
        async def _operation() -> None:
            try:
                await self._state_machine.run(
                    child.task_id,
                    start_stage,
                    shared_analysis=shared,
                )
            except PipelineError as exc:
                logger.warning("Batch %s child %s rejected: %s", batch_id, child.task_id, exc)
                self._repository.fail_task(
                    child.task_id,
                    failed_step=start_stage,
                    message=str(exc),
                )
            except Exception:  # noqa: BLE001
                logger.exception("Batch %s child %s crashed", batch_id, child.task_id)
                self._repository.fail_task(
                    child.task_id,
                    failed_step=start_stage,
                    message="unexpected error, see logs",
                )
            finally:
                self._repository.recompute_batch_aggregate(batch_id)

        return _operation
