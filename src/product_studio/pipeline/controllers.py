"""Controllers for task, batch, worker, cost and rating CLI commands."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from product_studio.config import Settings
from product_studio.pipeline.catalog import build_image_catalog
from product_studio.pipeline.dispatch import BackgroundDispatcher
from product_studio.pipeline.ledger import summarize
from product_studio.pipeline.models import (
    RATING_DIMENSIONS,
    BatchMaterial,
    BatchTaskView,
    CostSummary,
    ProductInfo,
    RatingInput,
    RatingView,
    TaskStatus,
    TaskView,
)
from product_studio.pipeline.ratings import summarize_ratings
from product_studio.pipeline.repository import PipelineRepository
from product_studio.pipeline.runtime import PipelineRuntime
from product_studio.pipeline.submission import (
    BatchSubmission,
    StyleSource,
    SubmissionService,
    TaskSubmission,
)
from product_studio.pipeline.templates import list_templates
from product_studio.pipeline.worker import PipelineWorker, WorkerRunSummary
from product_studio.storage.images import ImageStore

T = TypeVar("T")


@dataclass(slots=True)
class StyleOptions:
    """CLI input shared by task and batch submission."""

    reference_image: Path | None
    template_id: str | None
    reference_name: str | None
    reference_category: str | None
    models: tuple[str, ...]
    product_name: str | None
    product_category: str | None
    selling_points: str | None
    target_audience: str | None
    brand_tone: tuple[str, ...]
    resolution: str | None


@dataclass(slots=True)
class TaskSubmitCommand:
    """CLI input for single task submission."""

    db_path: Path | None
    product_image: Path
    options: StyleOptions
    wait: bool


@dataclass(slots=True)
class BatchSubmitCommand:
    """CLI input for batch submission."""

    db_path: Path | None
    product_images: tuple[Path, ...]
    names: tuple[str, ...]
    options: StyleOptions
    wait: bool


@dataclass(slots=True)
class TaskRunCommand:
    """CLI input for running a task from a given stage."""

    db_path: Path | None
    task_id: str
    start_stage: int | None


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for commands addressing one task."""

    db_path: Path | None
    task_id: str
    as_json: bool = False


@dataclass(slots=True)
class TaskRegenerateCommand:
    """CLI input for extra image generation."""

    db_path: Path | None
    task_id: str
    models: tuple[str, ...]


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class BatchRefCommand:
    """CLI input for commands addressing one batch."""

    db_path: Path | None
    batch_id: str
    as_json: bool = False


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for the pipeline worker."""

    db_path: Path | None
    once: bool
    max_items: int | None
    max_idle_polls: int
    poll_interval_seconds: float


@dataclass(slots=True)
class CostShowCommand:
    """CLI input for cost ledger inspection."""

    db_path: Path | None
    task_id: str | None
    batch_id: str | None


@dataclass(slots=True)
class TaskRateCommand:
    """CLI input for rating a task or one of its generated images."""

    db_path: Path | None
    task_id: str
    overall: int
    image_path: str | None = None
    quality: int | None = None
    style_match: int | None = None
    fidelity: int | None = None
    creativity: int | None = None
    comment: str | None = None


class StudioCliController:
    """Translates CLI commands into pipeline calls and printable lines."""

    def submit_task(self, command: TaskSubmitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = _submissions(settings, repository).submit_task(
                TaskSubmission(
                    product_image_path=_absolute(command.product_image),
                    style=_style_source(command.options),
                    models=command.options.models,
                    product_info=_product_info(command.options),
                    image_resolution=command.options.resolution,
                ),
            )
            lines = [
                f"Task submitted: task_id={task.task_id} mode={task.generation_mode.value} "
                f"models={','.join(task.selected_models)} status={task.status.value}",
            ]
            if command.wait:
                settings.validate_for_processing()
                task = _run_async(settings, repository, _dispatch_task(task.task_id))
                lines.extend(_task_lines(task))
        return lines

    def submit_batch(self, command: BatchSubmitCommand) -> list[str]:
        if command.names and len(command.names) != len(command.product_images):
            raise ValueError("--name must be given once per --product-image or not at all.")
        settings = Settings.from_env(db_path=command.db_path)
        materials = [
            BatchMaterial(
                path=_absolute(path),
                name=command.names[index] if command.names else None,
            )
            for index, path in enumerate(command.product_images)
        ]
        with _repository(settings) as repository:
            batch, children = _submissions(settings, repository).submit_batch(
                BatchSubmission(
                    materials=materials,
                    style=_style_source(command.options),
                    models=command.options.models,
                    product_info=_product_info(command.options),
                    image_resolution=command.options.resolution,
                ),
            )
            lines = [
                f"Batch submitted: batch_id={batch.batch_id} mode={batch.generation_mode.value} "
                f"children={len(children)} status={batch.status.value}",
            ]
            lines.extend(f"  #{child.batch_index} {child.task_id}" for child in children)
            if command.wait:
                settings.validate_for_processing()
                batch = _run_async(settings, repository, _dispatch_batch(batch.batch_id))
                lines.extend(_batch_lines(batch))
        return lines

    def run_task(self, command: TaskRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_processing()
        with _repository(settings) as repository:
            task = _run_async(
                settings,
                repository,
                lambda runtime: runtime.run_task(command.task_id, command.start_stage),
            )
        return _task_lines(task)

    def retry_task(self, command: TaskRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_processing()
        with _repository(settings) as repository:
            task = _run_async(
                settings,
                repository,
                lambda runtime: runtime.retry_task(command.task_id),
            )
        return _task_lines(task)

    def regenerate(self, command: TaskRegenerateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_processing()
        with _repository(settings) as repository:
            task = _run_async(
                settings,
                repository,
                lambda runtime: runtime.regenerate(command.task_id, command.models),
            )
        lines = _task_lines(task)
        lines.extend(
            f"  image model={image.model} path={image.path or '-'} "
            f"error={image.error or '-'}"
            for image in task.result_images
        )
        return lines

    def task_status(self, command: TaskRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            report = _submissions(settings, repository).task_status(command.task_id)
        if command.as_json:
            return [json.dumps(report.to_dict(), ensure_ascii=False, indent=2)]
        task = report.task
        lines = [
            f"Task: {task.task_id}",
            f"Status: {task.status.value} ({report.step_description})",
            f"Progress: {report.progress}% step={task.current_step}/{task.total_steps}",
            f"Mode: {task.generation_mode.value}",
            f"Batch: {task.batch_id or '-'}",
            f"Failed step: {task.failed_step or '-'}",
            f"Error: {task.error_message or '-'}",
            f"Result: {task.result_image_path or '-'}",
            f"Images: {sum(1 for image in task.result_images if image.succeeded)}",
            f"Ledger sum (mixed currencies): {task.total_cost:.6f}",
        ]
        if report.cost is not None:
            lines.extend(_summary_lines(report.cost))
        if task.generated_prompt:
            lines.append("Prompt:")
            lines.extend(f"  {line}" for line in task.generated_prompt.splitlines())
        return lines

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} "
                f"step={task.current_step}/{task.total_steps} "
                f"mode={task.generation_mode.value} batch={task.batch_id or '-'} "
                f"created_at={task.created_at.isoformat()}",
            )
        return lines

    def run_batch(self, command: BatchRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_processing()
        with _repository(settings) as repository:
            batch = _run_async(
                settings,
                repository,
                lambda runtime: runtime.run_batch(command.batch_id),
            )
        return _batch_lines(batch)

    def retry_batch(self, command: BatchRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_processing()
        with _repository(settings) as repository:
            batch = _run_async(
                settings,
                repository,
                lambda runtime: runtime.retry_batch(command.batch_id),
            )
        return _batch_lines(batch)

    def batch_status(self, command: BatchRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            report = _submissions(settings, repository).batch_status(command.batch_id)
        if command.as_json:
            return [json.dumps(report.to_dict(), ensure_ascii=False, indent=2)]
        lines = [*_batch_lines(report.batch), f"Progress: {report.progress}%"]
        for child in report.children:
            lines.append(
                f"  #{child.batch_index} {child.task_id} status={child.status.value} "
                f"step={child.current_step}/{child.total_steps} "
                f"failed_step={child.failed_step or '-'} error={child.error_message or '-'}",
            )
        return lines

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_processing()
        worker_id = f"worker-{os.getpid()}"

        async def _work(runtime: PipelineRuntime) -> WorkerRunSummary:
            worker = PipelineWorker(
                runtime,
                worker_id=worker_id,
                poll_interval_seconds=command.poll_interval_seconds,
            )
            if command.once:
                return await worker.run_once()
            return await worker.run_loop(
                max_items=command.max_items,
                max_idle_polls=command.max_idle_polls,
            )

        with _repository(settings) as repository:
            summary = _run_async(settings, repository, _work)

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} batches={summary.batches} "
            f"idle_polls={summary.idle_polls}",
        ]

    def show_cost(self, command: CostShowCommand) -> list[str]:
        if bool(command.task_id) == bool(command.batch_id):
            raise ValueError("Pass exactly one of --task-id or --batch-id.")
        settings = Settings.from_env(db_path=command.db_path)
        rate = settings.cost.metered_to_fixed_rate
        with _repository(settings) as repository:
            if command.task_id:
                report = _submissions(settings, repository).cost_report(command.task_id)
                entries = report.entries
                header = (
                    f"Cost for task {command.task_id}: "
                    f"ledger_sum={report.total_cost:.6f} (mixed currencies)"
                )
            else:
                repository.require_batch(command.batch_id or "")
                entries = repository.list_batch_cost_entries(command.batch_id or "")
                header = f"Cost for batch {command.batch_id}"

        lines = [header]
        for entry in entries:
            lines.append(
                f"  stage={entry.stage} model={entry.model or '-'} "
                f"amount={entry.amount:.6f} {entry.currency_class.value} "
                f"call_id={entry.call_id or '-'} "
                f"tokens={entry.tokens_prompt or 0}/{entry.tokens_completion or 0}",
            )
        lines.extend(_summary_lines(summarize(entries, conversion_rate=rate)))
        return lines

    def rate_task(self, command: TaskRateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            rating = repository.upsert_rating(
                RatingInput(
                    task_id=command.task_id,
                    overall=command.overall,
                    image_path=command.image_path,
                    quality=command.quality,
                    style_match=command.style_match,
                    fidelity=command.fidelity,
                    creativity=command.creativity,
                    comment=command.comment,
                ),
            )
        target = f"image {rating.image_path}" if rating.image_path else "task"
        return [f"Rated {target} of {rating.task_id}", _rating_line(rating)]

    def show_ratings(self, command: TaskRefCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.require_task(command.task_id)
            summary = summarize_ratings(
                repository.list_ratings(command.task_id),
                task.result_images,
            )
        if command.as_json:
            payload = {
                "task_rating": summary.task_rating.to_dict() if summary.task_rating else None,
                "image_ratings": [rating.to_dict() for rating in summary.image_ratings],
                "rated_images": summary.rated_images,
                "total_images": summary.total_images,
                "averages": summary.averages,
            }
            return [json.dumps(payload, ensure_ascii=False, indent=2)]

        lines = [
            f"Ratings for task {command.task_id}: "
            f"rated_images={summary.rated_images}/{summary.total_images}",
            "Task rating: "
            + (_rating_line(summary.task_rating).strip() if summary.task_rating else "-"),
        ]
        lines.extend(_rating_line(rating) for rating in summary.image_ratings)
        lines.append(
            "Averages: "
            + " ".join(f"{name}={value:.1f}" for name, value in summary.averages.items()),
        )
        return lines

    def templates(self, category: str | None) -> list[str]:
        templates = list_templates(category)
        lines = [f"Templates: {len(templates)}"]
        for template in templates:
            lines.append(
                f"  {template.template_id} category={template.category} "
                f"scene={template.scene_type} name={template.name}",
            )
            lines.append(f"    {template.description}")
        return lines


def _dispatch_task(task_id: str) -> Callable[[PipelineRuntime], Awaitable[TaskView]]:
    async def _action(runtime: PipelineRuntime) -> TaskView:
        dispatcher = BackgroundDispatcher(runtime)
        dispatcher.dispatch_task(task_id)
        await dispatcher.drain()
        return runtime.repository.require_task(task_id)

    return _action


def _dispatch_batch(batch_id: str) -> Callable[[PipelineRuntime], Awaitable[BatchTaskView]]:
    async def _action(runtime: PipelineRuntime) -> BatchTaskView:
        dispatcher = BackgroundDispatcher(runtime)
        dispatcher.dispatch_batch(batch_id)
        await dispatcher.drain()
        return runtime.repository.require_batch(batch_id)

    return _action


def _run_async(
    settings: Settings,
    repository: PipelineRepository,
    action: Callable[[PipelineRuntime], Awaitable[T]],
) -> T:
    async def _main() -> T:
        async with PipelineRuntime.build(settings, repository) as runtime:
            return await action(runtime)

    return asyncio.run(_main())


def _submissions(settings: Settings, repository: PipelineRepository) -> SubmissionService:
    return SubmissionService(
        repository=repository,
        images=ImageStore(settings.storage.image_root, result_dir=settings.storage.result_dir),
        catalog=build_image_catalog(settings),
        settings=settings,
    )


def _style_source(options: StyleOptions) -> StyleSource:
    reference = options.reference_image
    return StyleSource(
        reference_image_path=_absolute(reference) if reference is not None else None,
        style_template_id=options.template_id,
        reference_name=options.reference_name,
        reference_category=options.reference_category,
    )


def _product_info(options: StyleOptions) -> ProductInfo:
    return ProductInfo(
        product_name=options.product_name,
        product_category=options.product_category,
        selling_points=options.selling_points,
        target_audience=options.target_audience,
        brand_tone=options.brand_tone,
    )


def _absolute(path: Path) -> str:
    return str(path.expanduser().resolve())


def _task_lines(task: TaskView) -> list[str]:
    return [
        f"Task {task.task_id}: status={task.status.value} "
        f"step={task.current_step}/{task.total_steps} "
        f"failed_step={task.failed_step or '-'} error={task.error_message or '-'}",
        f"Result: {task.result_image_path or '-'} "
        f"ledger_sum={task.total_cost:.6f} (mixed currencies)",
    ]


def _batch_lines(batch: BatchTaskView) -> list[str]:
    return [
        f"Batch {batch.batch_id}: status={batch.status.value} "
        f"completed={batch.completed_count}/{batch.total_count} failed={batch.failed_count}",
    ]


def _summary_lines(summary: CostSummary) -> list[str]:
    lines = [f"Calls: {summary.calls}"]
    for currency, amount in summary.by_class.items():
        lines.append(f"  {currency.value}: {amount:.6f}")
    lines.append(
        f"Reference total ({summary.reference_currency.value}, display only): "
        f"{summary.reference_total:.6f}",
    )
    return lines


def _rating_line(rating: RatingView) -> str:
    parts = [f"overall={rating.overall}"]
    parts.extend(
        f"{name}={getattr(rating, name)}"
        for name in RATING_DIMENSIONS
        if getattr(rating, name) is not None
    )
    parts.append(f"comment={rating.comment or '-'}")
    if rating.image_path:
        parts[:0] = [rating.image_path, f"model={rating.model or '-'}"]
    return "  " + " ".join(parts)


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[PipelineRepository]:
    repository = PipelineRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
