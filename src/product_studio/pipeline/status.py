"""Read-only status reports for tasks and batches, safe to poll."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from product_studio.pipeline.models import (
    STEP_DESCRIPTIONS,
    BatchStatus,
    BatchTaskView,
    CostSummary,
    StyleAnalysis,
    TaskStatus,
    TaskView,
)


@dataclass(slots=True)
class TaskStatusReport:
    task: TaskView
    style_analysis: StyleAnalysis | None
    cost: CostSummary | None = None

    @property
    def progress(self) -> int:
        return task_progress(self.task)

    @property
    def step_description(self) -> str:
        return STEP_DESCRIPTIONS[self.task.status]

    def to_dict(self) -> dict[str, Any]:
        task = self.task
        return {
            "task_id": task.task_id,
            "status": task.status.value,
            "current_step": task.current_step,
            "total_steps": task.total_steps,
            "step_description": self.step_description,
            "progress": self.progress,
            "generation_mode": task.generation_mode.value,
            "batch_id": task.batch_id,
            "batch_index": task.batch_index,
            "failed_step": task.failed_step,
            "error_message": task.error_message,
            "style_analysis": self.style_analysis.to_dict() if self.style_analysis else None,
            "content_analysis": task.content_analysis.to_dict() if task.content_analysis else None,
            "generated_prompt": task.generated_prompt,
            "result_image_path": task.result_image_path,
            "result_images": [image.to_dict() for image in task.result_images],
            "used_models": task.used_models.to_dict() if task.used_models else None,
            "selected_models": list(task.selected_models),
            "total_cost": task.total_cost,
            "cost_by_class": (
                {currency.value: amount for currency, amount in self.cost.by_class.items()}
                if self.cost is not None
                else None
            ),
            "created_at": task.created_at.isoformat(),
            "updated_at": task.updated_at.isoformat(),
            "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        }


@dataclass(slots=True)
class BatchStatusReport:
    batch: BatchTaskView
    children: list[TaskView]

    @property
    def progress(self) -> int:
        if self.batch.total_count == 0:
            return 0
        if self.batch.status == BatchStatus.COMPLETED:
            return 100
        settled = self.batch.completed_count + self.batch.failed_count
        return round(settled / self.batch.total_count * 100)

    def to_dict(self) -> dict[str, Any]:
        batch = self.batch
        return {
            "batch_id": batch.batch_id,
            "status": batch.status.value,
            "generation_mode": batch.generation_mode.value,
            "total_count": batch.total_count,
            "completed_count": batch.completed_count,
            "failed_count": batch.failed_count,
            "progress": self.progress,
            "has_shared_analysis": batch.shared_analysis is not None,
            "children": [_child_summary(child) for child in self.children],
        }


def task_progress(task: TaskView) -> int:
    """Percent of stages reached; 100 once completed."""

    if task.status == TaskStatus.COMPLETED:
        return 100
    if task.total_steps <= 0:
        return 0
    return round(task.current_step / task.total_steps * 100)


def _child_summary(child: TaskView) -> dict[str, Any]:
    return {
        "task_id": child.task_id,
        "batch_index": child.batch_index,
        "product_image_path": child.product_image_path,
        "product_name": child.product_info.product_name if child.product_info else None,
        "status": child.status.value,
        "current_step": child.current_step,
        "progress": task_progress(child),
        "failed_step": child.failed_step,
        "error_message": child.error_message,
        "result_image_path": child.result_image_path,
        "total_cost": child.total_cost,
    }
