"""Inbound boundary: validate submissions, persist them as `pending`, answer status reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from product_studio.config import Settings
from product_studio.pipeline.catalog import ImageModelSpec, resolve_selected_models
from product_studio.pipeline.errors import InvalidSubmissionError
from product_studio.pipeline.ledger import summarize
from product_studio.pipeline.models import (
    BatchMaterial,
    BatchTaskCreate,
    BatchTaskView,
    CostEntryView,
    CostSummary,
    GenerationMode,
    ProductInfo,
    TaskCreate,
    TaskStatus,
    TaskView,
)
from product_studio.pipeline.repository import PipelineRepository
from product_studio.pipeline.status import BatchStatusReport, TaskStatusReport
from product_studio.pipeline.templates import get_template
from product_studio.storage.images import ImageStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StyleSource:
    """Either a reference image or a preset template, never both."""

    reference_image_path: str | None = None
    style_template_id: str | None = None
    reference_name: str | None = None
    reference_category: str | None = None


@dataclass(slots=True)
class TaskSubmission:
    product_image_path: str
    style: StyleSource
    models: tuple[str, ...] = ()
    product_info: ProductInfo | None = None
    image_resolution: str | None = None


@dataclass(slots=True)
class BatchSubmission:
    materials: list[BatchMaterial]
    style: StyleSource
    models: tuple[str, ...] = ()
    product_info: ProductInfo | None = None
    image_resolution: str | None = None


@dataclass(slots=True)
class CostReport:
    task_id: str
    entries: list[CostEntryView] = field(default_factory=list)
    summary: CostSummary | None = None
    total_cost: float = 0.0


class SubmissionService:
    """Records exist in `pending` before any id is handed back."""

    def __init__(
        self,
        *,
        repository: PipelineRepository,
        images: ImageStore,
        catalog: dict[str, ImageModelSpec],
        settings: Settings,
    ) -> None:
        self._repository = repository
        self._images = images
        self._catalog = catalog
        self._settings = settings

    def submit_task(self, submission: TaskSubmission) -> TaskView:
        mode = self._validate_style(submission.style)
        self._require_image(submission.product_image_path, "product image")
        task = self._repository.create_task(
            TaskCreate(
                product_image_path=submission.product_image_path,
                generation_mode=mode,
                selected_models=self._models(submission.models),
                reference_image_path=submission.style.reference_image_path,
                style_template_id=submission.style.style_template_id,
                reference_name=submission.style.reference_name,
                reference_category=submission.style.reference_category,
                product_info=_normalized(submission.product_info),
                image_resolution=submission.image_resolution,
            ),
        )
        logger.info("Task %s submitted (%s mode)", task.task_id, mode.value)
        return task

    def submit_batch(self, submission: BatchSubmission) -> tuple[BatchTaskView, list[TaskView]]:
        limit = self._settings.pipeline.max_batch_size
        if not 1 <= len(submission.materials) <= limit:
            raise InvalidSubmissionError(
                f"A batch needs between 1 and {limit} product images, "
                f"got {len(submission.materials)}.",
            )
        mode = self._validate_style(submission.style)
        for material in submission.materials:
            self._require_image(material.path, "product image")
        batch, children = self._repository.create_batch(
            BatchTaskCreate(
                materials=submission.materials,
                generation_mode=mode,
                selected_models=self._models(submission.models),
                reference_image_path=submission.style.reference_image_path,
                style_template_id=submission.style.style_template_id,
                reference_name=submission.style.reference_name,
                reference_category=submission.style.reference_category,
                product_info=_normalized(submission.product_info),
                image_resolution=submission.image_resolution,
            ),
        )
        logger.info("Batch %s submitted with %d children", batch.batch_id, len(children))
        return batch, children

    def task_status(self, task_id: str) -> TaskStatusReport:
        task = self._repository.require_task(task_id)
        style = task.style_analysis
        if style is None and task.batch_id is not None:
            batch = self._repository.get_batch(task.batch_id)
            style = batch.shared_analysis if batch is not None else None
        cost = summarize(
            self._repository.list_cost_entries(task_id),
            conversion_rate=self._settings.cost.metered_to_fixed_rate,
        )
        return TaskStatusReport(task=task, style_analysis=style, cost=cost)

    def batch_status(self, batch_id: str) -> BatchStatusReport:
        batch = self._repository.require_batch(batch_id)
        return BatchStatusReport(
            batch=batch,
            children=self._repository.list_batch_children(batch_id),
        )

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 20) -> list[TaskView]:
        return self._repository.list_tasks(status=status, limit=limit)

    def cost_report(self, task_id: str) -> CostReport:
        task = self._repository.require_task(task_id)
        entries = self._repository.list_cost_entries(task_id)
        return CostReport(
            task_id=task_id,
            entries=entries,
            summary=summarize(entries, conversion_rate=self._settings.cost.metered_to_fixed_rate),
            total_cost=task.total_cost,
        )

    def _validate_style(self, style: StyleSource) -> GenerationMode:
        if style.reference_image_path and style.style_template_id:
            raise InvalidSubmissionError("Use either a reference image or a template, not both.")
        if style.style_template_id:
            if get_template(style.style_template_id) is None:
                raise InvalidSubmissionError(f"Unknown style template: {style.style_template_id}")
            return GenerationMode.TEMPLATE
        if not style.reference_image_path:
            raise InvalidSubmissionError("Reference mode requires a reference image.")
        self._require_image(style.reference_image_path, "reference image")
        return GenerationMode.REFERENCE

    def _require_image(self, path: str, label: str) -> None:
        if not path or not self._images.resolve(path).is_file():
            raise InvalidSubmissionError(f"{label.capitalize()} not found: {path}")

    def _models(self, requested: tuple[str, ...]) -> tuple[str, ...]:
        selected = resolve_selected_models(
            requested,
            self._catalog,
            defaults=self._settings.pipeline.default_image_models,
            limit=self._settings.pipeline.max_selected_models,
        )
        if not selected:
            raise InvalidSubmissionError("No usable image model selected.")
        return selected


def _normalized(info: ProductInfo | None) -> ProductInfo | None:
    if info is None or info.is_empty():
        return None
    return info
