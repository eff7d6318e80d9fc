from __future__ import annotations

from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from product_studio.pipeline.errors import BatchNotFoundError, TaskNotFoundError
from product_studio.pipeline.models import (
    BatchMaterial,
    BatchStatus,
    BatchTaskCreate,
    GenerationMode,
    ProductInfo,
    Stage,
    StyleAnalysis,
    TaskCreate,
    TaskStatus,
    UsedModels,
    derive_batch_status,
)
from product_studio.pipeline.repository import PipelineRepository
from product_studio.storage.alembic_runner import current_revision

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Task & Batch Repository"),
]


def _batch(repository: PipelineRepository, count: int = 3, **overrides):
    payload = BatchTaskCreate(
        materials=[
            BatchMaterial(path=f"p{index}.png", name=f"Item {index}") for index in range(count)
        ],
        generation_mode=overrides.pop("generation_mode", GenerationMode.REFERENCE),
        selected_models=("openrouter-gemini-image",),
        reference_image_path="reference.png",
        product_info=ProductInfo(selling_points="crunchy", brand_tone=("warm",)),
        **overrides,
    )
    return repository.create_batch(payload)


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = PipelineRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    assert current_revision(tmp_path / "fresh.db") is None
    with repository.engine.connect() as connection:
        tables = connection.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"),
        ).scalars().all()
    repository.close()

    assert current_revision(tmp_path / "migrations.db") == "20261017_0002"
    assert {"batch_tasks", "tasks", "cost_entries", "ratings"} <= set(tables)


def test_create_task_starts_pending_at_step_zero(repository: PipelineRepository) -> None:
    task = repository.create_task(
        TaskCreate(
            product_image_path="product.png",
            generation_mode=GenerationMode.TEMPLATE,
            selected_models=("openrouter-gemini-image", "jimeng-seedream"),
            style_template_id="premium-dark",
        ),
    )

    assert task.status == TaskStatus.PENDING
    assert task.current_step == 0
    assert task.total_steps == 4
    assert task.selected_models == ("openrouter-gemini-image", "jimeng-seedream")
    assert task.batch_id is None
    assert task.total_cost == 0.0


def test_create_batch_orders_children_and_names_products(
    repository: PipelineRepository,
) -> None:
    batch, children = _batch(repository, count=3)

    assert batch.status == BatchStatus.PENDING
    assert batch.total_count == 3
    assert [child.batch_index for child in children] == [0, 1, 2]
    listed = repository.list_batch_children(batch.batch_id)
    assert [child.task_id for child in listed] == [child.task_id for child in children]
    first = listed[0].product_info
    assert first is not None
    assert first.product_name == "Item 0"
    assert first.selling_points == "crunchy"
    assert first.brand_tone == ("warm",)


def test_stage_updates_are_checkpointed(repository: PipelineRepository) -> None:
    task = repository.create_task(
        TaskCreate(
            product_image_path="product.png",
            generation_mode=GenerationMode.REFERENCE,
            selected_models=("openrouter-gemini-image",),
            reference_image_path="reference.png",
        ),
    )

    repository.mark_stage(task.task_id, Stage.PROMPT_SYNTHESIS)
    repository.save_style_analysis(task.task_id, StyleAnalysis(layout={"grid": "centered"}))
    repository.save_prompt(task.task_id, "a prompt")
    repository.fail_task(task.task_id, failed_step=3, message="boom")
    failed = repository.require_task(task.task_id)

    assert failed.status == TaskStatus.FAILED
    assert failed.current_step == 3
    assert failed.failed_step == 3
    assert failed.error_message == "boom"
    assert failed.style_analysis is not None
    assert failed.style_analysis.layout == {"grid": "centered"}

    repository.reset_for_resume(task.task_id)
    repository.complete_task(task.task_id, used_models=UsedModels(prompt_synthesis="local"))
    done = repository.require_task(task.task_id)

    assert done.status == TaskStatus.COMPLETED
    assert done.current_step == 4
    assert done.failed_step is None
    assert done.error_message is None
    assert done.completed_at is not None
    assert done.generated_prompt == "a prompt"
    assert done.used_models is not None
    assert done.used_models.prompt_synthesis == "local"


def test_recompute_batch_aggregate_follows_children(repository: PipelineRepository) -> None:
    batch, children = _batch(repository, count=3)

    repository.complete_task(children[0].task_id)
    view = repository.recompute_batch_aggregate(batch.batch_id)
    assert (view.status, view.completed_count, view.failed_count) == (
        BatchStatus.PROCESSING,
        1,
        0,
    )

    repository.complete_task(children[1].task_id)
    repository.fail_task(children[2].task_id, failed_step=2, message="x")
    view = repository.recompute_batch_aggregate(batch.batch_id)
    assert view.status == BatchStatus.PARTIAL_FAILED
    assert repository.recompute_batch_aggregate(batch.batch_id).status == view.status

    failed = repository.list_batch_children(batch.batch_id, statuses={TaskStatus.FAILED})
    assert [child.task_id for child in failed] == [children[2].task_id]


@pytest.mark.parametrize(
    ("total", "completed", "failed", "expected"),
    [
        (3, 0, 0, BatchStatus.PROCESSING),
        (3, 2, 0, BatchStatus.PROCESSING),
        (3, 3, 0, BatchStatus.COMPLETED),
        (3, 0, 3, BatchStatus.FAILED),
        (3, 2, 1, BatchStatus.PARTIAL_FAILED),
    ],
)
def test_derive_batch_status(total: int, completed: int, failed: int, expected) -> None:
    assert derive_batch_status(total=total, completed=completed, failed=failed) == expected


def test_shared_analysis_is_written_once(repository: PipelineRepository) -> None:
    batch, _ = _batch(repository, count=1)

    first, first_written = repository.attach_shared_analysis(
        batch.batch_id,
        StyleAnalysis(style={"vibe": "calm"}),
    )
    second, second_written = repository.attach_shared_analysis(
        batch.batch_id,
        StyleAnalysis(style={"vibe": "loud"}),
    )
    stored = repository.require_batch(batch.batch_id).shared_analysis

    assert (first_written, second_written) == (True, False)
    assert first.vibe == second.vibe == "calm"
    assert stored is not None
    assert stored.vibe == "calm"


def test_batch_run_claim_is_exclusive(repository: PipelineRepository) -> None:
    batch, _ = _batch(repository, count=1)

    assert repository.acquire_batch(batch.batch_id, owner="run-a")
    assert repository.acquire_batch(batch.batch_id, owner="run-a")
    assert not repository.acquire_batch(batch.batch_id, owner="run-b")

    repository.release_batch(batch.batch_id, owner="run-b")
    assert repository.require_batch(batch.batch_id).claimed_by == "run-a"

    repository.release_batch(batch.batch_id, owner="run-a")
    assert repository.acquire_batch(batch.batch_id, owner="run-b")
    with pytest.raises(BatchNotFoundError):
        repository.acquire_batch("nope", owner="run-a")


def test_claims_are_exclusive_and_skip_batch_children(repository: PipelineRepository) -> None:
    _batch(repository, count=2)
    standalone = repository.create_task(
        TaskCreate(
            product_image_path="product.png",
            generation_mode=GenerationMode.TEMPLATE,
            selected_models=("openrouter-gemini-image",),
            style_template_id="natural-fresh",
        ),
    )

    claimed = repository.claim_pending_task(worker_id="w1")
    assert claimed is not None
    assert claimed.task_id == standalone.task_id
    assert claimed.claimed_by == "w1"
    assert repository.claim_pending_task(worker_id="w2") is None

    batch = repository.claim_pending_batch(worker_id="w1")
    assert batch is not None
    assert repository.claim_pending_batch(worker_id="w2") is None

    repository.release_task(standalone.task_id)
    assert repository.require_task(standalone.task_id).claimed_by is None


def test_missing_records_raise_not_found(repository: PipelineRepository) -> None:
    with pytest.raises(TaskNotFoundError):
        repository.require_task("nope")
    with pytest.raises(TaskNotFoundError):
        repository.mark_stage("nope", Stage.CONTENT_ANALYSIS)
    with pytest.raises(BatchNotFoundError):
        repository.recompute_batch_aggregate("nope")
