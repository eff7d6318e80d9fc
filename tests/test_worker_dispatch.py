from __future__ import annotations

import asyncio

import allure

from product_studio.pipeline.dispatch import BackgroundDispatcher
from product_studio.pipeline.models import (
    BatchStatus,
    BatchTaskCreate,
    GenerationMode,
    TaskStatus,
)
from product_studio.pipeline.worker import PipelineWorker, WorkerRunSummary

pytestmark = [
    allure.epic("Pipeline Engine"),
    allure.feature("Worker & Background Dispatch"),
]


def _template_batch(studio, count: int):
    return studio.repository.create_batch(
        BatchTaskCreate(
            materials=studio.materials(count),
            generation_mode=GenerationMode.TEMPLATE,
            selected_models=("openrouter-gemini-image",),
            style_template_id="natural-fresh",
        ),
    )


def test_worker_claims_batches_before_standalone_tasks(studio) -> None:
    task = studio.template_task()
    batch, children = _template_batch(studio, 2)
    worker = PipelineWorker(studio.runtime, worker_id="w1", poll_interval_seconds=0)

    first = asyncio.run(worker.run_once())

    assert (first.processed, first.batches, first.succeeded) == (1, 1, 1)
    assert studio.repository.require_batch(batch.batch_id).status == BatchStatus.COMPLETED
    assert studio.repository.require_batch(batch.batch_id).claimed_by is None
    for child in children:
        assert studio.repository.require_task(child.task_id).status == TaskStatus.COMPLETED
    assert studio.repository.require_task(task.task_id).status == TaskStatus.PENDING

    second = asyncio.run(worker.run_once())

    assert (second.processed, second.batches) == (1, 0)
    stored = studio.repository.require_task(task.task_id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.claimed_by is None


def test_worker_loop_stops_after_idle_polls(studio) -> None:
    studio.template_task()
    studio.template_task()
    worker = PipelineWorker(studio.runtime, worker_id="w1", poll_interval_seconds=0)

    summary = asyncio.run(worker.run_loop(max_idle_polls=2))

    assert summary.processed == 2
    assert summary.succeeded == 2
    assert summary.idle_polls == 2


def test_worker_loop_honours_max_items(studio) -> None:
    for _ in range(3):
        studio.template_task()
    worker = PipelineWorker(studio.runtime, worker_id="w1", poll_interval_seconds=0)

    summary = asyncio.run(worker.run_loop(max_items=1))

    assert summary.processed == 1
    pending = studio.repository.list_tasks(status=TaskStatus.PENDING)
    assert len(pending) == 2


def test_worker_counts_failed_tasks(studio) -> None:
    studio.template_task()
    studio.providers.fail_images = True
    worker = PipelineWorker(studio.runtime, worker_id="w1", poll_interval_seconds=0)

    summary = asyncio.run(worker.run_once())

    assert (summary.processed, summary.failed, summary.succeeded) == (1, 1, 0)


def test_stopped_worker_does_not_claim(studio) -> None:
    task = studio.template_task()
    worker = PipelineWorker(studio.runtime, worker_id="w1")
    worker.request_stop()

    summary = asyncio.run(worker.run_once())

    assert summary == WorkerRunSummary(idle_polls=1)
    assert studio.repository.require_task(task.task_id).claimed_by is None


def test_dispatcher_runs_work_without_blocking_the_caller(studio) -> None:
    task = studio.template_task()
    batch, _ = _template_batch(studio, 2)

    async def scenario() -> tuple[int, int]:
        dispatcher = BackgroundDispatcher(studio.runtime)
        dispatcher.dispatch_task(task.task_id)
        dispatcher.dispatch_batch(batch.batch_id)
        scheduled = dispatcher.pending
        await dispatcher.drain()
        return scheduled, dispatcher.pending

    scheduled, remaining = asyncio.run(scenario())

    assert (scheduled, remaining) == (2, 0)
    assert studio.repository.require_task(task.task_id).status == TaskStatus.COMPLETED
    assert studio.repository.require_batch(batch.batch_id).status == BatchStatus.COMPLETED


def test_dispatcher_counts_failed_runs(studio) -> None:
    async def scenario() -> int:
        dispatcher = BackgroundDispatcher(studio.runtime)
        dispatcher.dispatch_task("missing-task")
        await dispatcher.drain()
        return dispatcher.failures

    assert asyncio.run(scenario()) == 1
