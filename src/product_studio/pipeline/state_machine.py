"""Resumable four-stage state machine for a single generation task."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from product_studio.pipeline.catalog import ImageModelSpec
from product_studio.pipeline.errors import CannotResumeError, PipelineError, RegenerationError
from product_studio.pipeline.executor import StepExecutor
from product_studio.pipeline.ledger import CostLedger
from product_studio.pipeline.models import (
    REGENERATION_STEP,
    ContentAnalysis,
    GenerationMode,
    Stage,
    StyleAnalysis,
    TaskStatus,
    TaskView,
    UsedModels,
)
from product_studio.pipeline.repository import PipelineRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _StageInputs:
    """Predecessor outputs loaded once before the first stage runs."""

    style: StyleAnalysis | None
    content: ContentAnalysis | None
    prompt: str | None
    style_is_shared: bool


class TaskStateMachine:
    """Drives stages `start_stage..4` for one task with checkpointed outputs.

    Every stage marks status and step together, persists its output before
    the next stage reads it, then prices its calls. Any exception inside a
    stage stops the run and is recorded as `failed_step` plus message; it is
    not raised to the caller. Only a resume precondition failure raises.
    """

    def __init__(
        self,
        repository: PipelineRepository,
        executor: StepExecutor,
        ledger: CostLedger,
        *,
        catalog: dict[str, ImageModelSpec] | None = None,
        max_images_per_task: int = 6,
        max_selected_models: int = 3,
    ) -> None:
        self._repository = repository
        self._executor = executor
        self._ledger = ledger
        self._catalog = catalog or {}
        self._max_images = max_images_per_task
        self._max_selected_models = max_selected_models

    async def run(
        self,
        task_id: str,
        start_stage: int = Stage.REFERENCE_ANALYSIS,
        *,
        shared_analysis: StyleAnalysis | None = None,
    ) -> TaskView:
        first = _to_stage(start_stage)
        task = self._repository.require_task(task_id)
        inputs = self._load_inputs(task, first, shared_analysis)

        self._repository.reset_for_resume(task_id)
        used = task.used_models or UsedModels()
        if inputs.style_is_shared and used.reference_analysis is None:
            used.reference_analysis = f"batch:{task.batch_id}"
        logger.info("Task %s: running stages %d-4", task_id, int(first))

        current = first
        try:
            for stage in Stage:
                if stage < first:
                    continue
                current = stage
                self._repository.mark_stage(task_id, stage)
                await self._run_stage(task, stage, inputs, used)
                self._repository.save_used_models(task_id, used)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            logger.warning("Task %s failed at stage %d: %s", task_id, int(current), message)
            self._repository.fail_task(task_id, failed_step=int(current), message=message)
            return self._repository.require_task(task_id)

        self._repository.complete_task(task_id, used_models=used)
        logger.info("Task %s completed", task_id)
        return self._repository.require_task(task_id)

    async def resume(self, task_id: str) -> TaskView:
        """Re-enter a failed task at its recorded failed stage."""

        task = self._repository.require_task(task_id)
        if task.status != TaskStatus.FAILED:
            raise PipelineError(
                f"Only failed tasks can be resumed, task {task_id} is {task.status.value}.",
            )
        return await self.run(task_id, task.failed_step or default_start_stage(task))

    async def _run_stage(
        self,
        task: TaskView,
        stage: Stage,
        inputs: _StageInputs,
        used: UsedModels,
    ) -> None:
        if stage == Stage.REFERENCE_ANALYSIS:
            style_outcome = await self._executor.analyze_reference(task)
            self._repository.save_style_analysis(task.task_id, style_outcome.output)
            inputs.style = style_outcome.output
            used.reference_analysis = style_outcome.model
            await self._ledger.record_calls(task.task_id, int(stage), style_outcome.calls)
        elif stage == Stage.CONTENT_ANALYSIS:
            content_outcome = await self._executor.analyze_content(task)
            self._repository.save_content_analysis(task.task_id, content_outcome.output)
            inputs.content = content_outcome.output
            used.content_analysis = content_outcome.model
            await self._ledger.record_calls(task.task_id, int(stage), content_outcome.calls)
        elif stage == Stage.PROMPT_SYNTHESIS:
            if inputs.style is None or inputs.content is None:
                raise PipelineError("prompt synthesis reached without both analyses")
            prompt_outcome = await self._executor.synthesize_prompt(
                task,
                inputs.style,
                inputs.content,
            )
            self._repository.save_prompt(task.task_id, prompt_outcome.output)
            inputs.prompt = prompt_outcome.output
            used.prompt_synthesis = prompt_outcome.model
            await self._ledger.record_calls(task.task_id, int(stage), prompt_outcome.calls)
        else:
            if inputs.prompt is None:
                raise PipelineError("image generation reached without a prompt")
            image_outcome = await self._executor.generate_images(
                task,
                inputs.prompt,
                task.selected_models,
            )
            self._repository.save_result_images(task.task_id, image_outcome.output)
            used.image_generation = [
                result.model for result in image_outcome.output if result.succeeded
            ]
            await self._ledger.record_calls(task.task_id, int(stage), image_outcome.calls)

    def _load_inputs(
        self,
        task: TaskView,
        first: Stage,
        shared_analysis: StyleAnalysis | None,
    ) -> _StageInputs:
        """Resolve predecessor outputs; raise before any write when one is missing."""

        shared_mode = task.batch_id is not None and task.generation_mode == GenerationMode.REFERENCE
        if shared_mode and first == Stage.REFERENCE_ANALYSIS:
            raise PipelineError(
                f"Task {task.task_id} reads the shared batch analysis and cannot run stage 1.",
            )
        style = task.style_analysis
        if shared_analysis is not None:
            style = shared_analysis
        elif shared_mode and task.batch_id is not None:
            batch = self._repository.get_batch(task.batch_id)
            style = batch.shared_analysis if batch is not None else None

        inputs = _StageInputs(
            style=style,
            content=task.content_analysis,
            prompt=task.generated_prompt,
            style_is_shared=shared_mode,
        )
        required: list[tuple[Stage, object, str]] = [
            (Stage.CONTENT_ANALYSIS, inputs.style, "style analysis"),
            (Stage.PROMPT_SYNTHESIS, inputs.content, "content analysis"),
            (Stage.IMAGE_GENERATION, inputs.prompt, "generated prompt"),
        ]
        for needed_from, value, name in required:
            if first >= needed_from and value is None:
                raise CannotResumeError(task.task_id, int(first), name)
        return inputs

    async def regenerate(self, task_id: str, models: Sequence[str]) -> TaskView:
        """Generate extra images from the stored prompt and prepend them to the results."""

        task = self._repository.require_task(task_id)
        if task.status not in {TaskStatus.COMPLETED, TaskStatus.FAILED}:
            raise RegenerationError(
                f"Task {task_id} is {task.status.value}; "
                "only completed or failed tasks can regenerate.",
            )
        if not task.generated_prompt:
            raise RegenerationError(f"Task {task_id} has no generated prompt yet.")
        selected = self._validate_models(models)
        existing = [result for result in task.result_images if result.succeeded]
        free_slots = self._max_images - len(existing)
        if free_slots <= 0:
            raise RegenerationError(
                f"Task {task_id} already has {len(existing)} images (max {self._max_images}).",
            )
        selected = selected[:free_slots]

        logger.info("Task %s: regenerating with %s", task_id, ", ".join(selected))
        outcome = await self._executor.generate_for_models(task, task.generated_prompt, selected)
        self._repository.save_result_images(task_id, [*outcome.results, *task.result_images])
        await self._ledger.record_calls(task_id, REGENERATION_STEP, outcome.calls)

        new_models = [result.model for result in outcome.succeeded]
        if not new_models:
            logger.warning("Task %s: every regeneration model failed", task_id)
        if existing or new_models:
            used = task.used_models or UsedModels()
            used.image_generation = [*new_models, *used.image_generation]
            self._repository.complete_task(task_id, used_models=used)
        return self._repository.require_task(task_id)

    def _validate_models(self, models: Sequence[str]) -> list[str]:
        selected: list[str] = []
        for model_id in models:
            if model_id not in self._catalog:
                raise RegenerationError(f"Unknown image model: {model_id}")
            if model_id not in selected:
                selected.append(model_id)
        if not selected:
            raise RegenerationError("At least one image model is required.")
        return selected[: self._max_selected_models]


def _to_stage(value: int) -> Stage:
    try:
        return Stage(int(value))
    except ValueError as exc:
        raise PipelineError(f"Start stage must be between 1 and 4, got {value}.") from exc


def default_start_stage(task: TaskView) -> Stage:
    """Reference-mode batch children start at stage 2, everything else at 1."""

    if task.batch_id is not None and task.generation_mode == GenerationMode.REFERENCE:
        return Stage.CONTENT_ANALYSIS
    return Stage.REFERENCE_ANALYSIS
