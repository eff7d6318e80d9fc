from __future__ import annotations

import asyncio

import allure
import pytest

from product_studio.pipeline.errors import CannotResumeError, PipelineError
from product_studio.pipeline.models import (
    REGENERATION_STEP,
    ContentAnalysis,
    CurrencyClass,
    TaskStatus,
)

pytestmark = [
    allure.epic("Pipeline Engine"),
    allure.feature("Task State Machine"),
]


def test_template_task_runs_all_stages_and_prices_calls(studio) -> None:
    task = studio.template_task()

    done = asyncio.run(studio.runtime.run_task(task.task_id))

    assert done.status == TaskStatus.COMPLETED
    assert done.current_step == 4
    assert done.style_analysis is not None
    assert done.style_analysis.layout
    assert "SCENE" in (done.generated_prompt or "")
    assert done.result_image_path is not None
    assert studio.runtime.images.resolve(done.result_image_path).read_bytes() == b"product.png"
    assert studio.providers.style_calls == 0
    assert done.used_models is not None
    assert done.used_models.reference_analysis == "template:natural-fresh"
    assert done.used_models.image_generation == ["openrouter-gemini-image"]

    entries = studio.repository.list_cost_entries(task.task_id)
    assert [entry.stage for entry in entries] == [2, 4]
    assert all(entry.currency_class == CurrencyClass.METERED_USD for entry in entries)
    assert done.total_cost == pytest.approx(sum(entry.amount for entry in entries))


def test_reference_task_runs_ocr_and_style_analysis(studio) -> None:
    task = studio.reference_task()

    done = asyncio.run(studio.runtime.run_task(task.task_id))

    assert done.status == TaskStatus.COMPLETED
    assert studio.providers.ocr_calls == 1
    assert studio.providers.style_calls == 1
    assert done.style_analysis is not None
    assert done.style_analysis.ocr_texts
    assert [entry.stage for entry in studio.repository.list_cost_entries(task.task_id)] == [
        1,
        2,
        4,
    ]


def test_stage_four_failure_then_resume_skips_earlier_stages(studio) -> None:
    task = studio.reference_task()
    studio.providers.fail_images = True

    failed = asyncio.run(studio.runtime.run_task(task.task_id))

    assert failed.status == TaskStatus.FAILED
    assert failed.failed_step == 4
    assert failed.current_step == 4
    assert "all image models failed" in (failed.error_message or "")
    assert failed.generated_prompt
    calls_before = (studio.providers.style_calls, studio.providers.content_calls)
    cost_before = failed.total_cost

    studio.providers.fail_images = False
    resumed = asyncio.run(studio.runtime.retry_task(task.task_id))

    assert resumed.status == TaskStatus.COMPLETED
    assert resumed.failed_step is None
    assert resumed.error_message is None
    assert (studio.providers.style_calls, studio.providers.content_calls) == calls_before
    assert resumed.generated_prompt == failed.generated_prompt
    assert resumed.total_cost > cost_before


def test_content_failure_is_recorded_at_stage_two(studio) -> None:
    task = studio.template_task()
    studio.providers.fail_content_for.add(b"product.png")

    failed = asyncio.run(studio.runtime.run_task(task.task_id))

    assert failed.status == TaskStatus.FAILED
    assert failed.failed_step == 2
    assert "content analysis unavailable" in (failed.error_message or "")
    assert failed.style_analysis is not None
    assert failed.content_analysis is None


def test_resume_without_predecessor_output_is_rejected_before_any_write(studio) -> None:
    task = studio.reference_task()
    before = studio.repository.require_task(task.task_id)

    with pytest.raises(CannotResumeError, match="cannot-resume") as error:
        asyncio.run(studio.runtime.run_task(task.task_id, 3))

    assert error.value.missing == "style analysis"
    after = studio.repository.require_task(task.task_id)
    assert after.status == before.status
    assert after.updated_at == before.updated_at
    assert studio.providers.calls == []


def test_resume_at_stage_three_with_stored_outputs_only_synthesizes_and_generates(
    studio,
) -> None:
    task = studio.template_task()
    asyncio.run(studio.runtime.run_task(task.task_id))
    content_calls = studio.providers.content_calls
    studio.repository.save_content_analysis(
        task.task_id,
        ContentAnalysis(product_shape={"category": "jar"}),
    )

    rerun = asyncio.run(studio.runtime.run_task(task.task_id, 3))

    assert rerun.status == TaskStatus.COMPLETED
    assert studio.providers.content_calls == content_calls
    assert "jar" in (rerun.generated_prompt or "")


def test_start_stage_out_of_range_is_rejected(studio) -> None:
    task = studio.template_task()

    with pytest.raises(PipelineError, match="between 1 and 4"):
        asyncio.run(studio.runtime.run_task(task.task_id, 5))


def test_only_failed_tasks_can_be_retried(studio) -> None:
    task = studio.template_task()

    with pytest.raises(PipelineError, match="Only failed tasks"):
        asyncio.run(studio.runtime.retry_task(task.task_id))


def test_regenerate_prepends_images_and_prices_them_separately(studio) -> None:
    task = studio.template_task()
    first = asyncio.run(studio.runtime.run_task(task.task_id))

    regenerated = asyncio.run(
        studio.runtime.regenerate(task.task_id, ["jimeng-seedream", "jimeng-seedream"]),
    )

    assert regenerated.status == TaskStatus.COMPLETED
    assert [image.model for image in regenerated.result_images] == [
        "jimeng-seedream",
        "openrouter-gemini-image",
    ]
    assert regenerated.result_image_path != first.result_image_path
    extra = [
        entry
        for entry in studio.repository.list_cost_entries(task.task_id)
        if entry.stage == REGENERATION_STEP
    ]
    assert len(extra) == 1
    assert extra[0].currency_class == CurrencyClass.FIXED_CNY
    assert extra[0].amount == pytest.approx(studio.settings.jimeng.cost_per_image)


def test_regenerate_rejects_unknown_models_and_full_tasks(studio) -> None:
    task = studio.template_task()
    asyncio.run(studio.runtime.run_task(task.task_id))

    with pytest.raises(PipelineError, match="Unknown image model"):
        asyncio.run(studio.runtime.regenerate(task.task_id, ["dall-e"]))

    for _ in range(5):
        asyncio.run(studio.runtime.regenerate(task.task_id, ["openrouter-gemini-image"]))
    with pytest.raises(PipelineError, match="max 6"):
        asyncio.run(studio.runtime.regenerate(task.task_id, ["openrouter-gemini-image"]))


def test_regenerate_requires_a_finished_task(studio) -> None:
    task = studio.template_task()

    with pytest.raises(PipelineError, match="only completed or failed"):
        asyncio.run(studio.runtime.regenerate(task.task_id, ["openrouter-gemini-image"]))
