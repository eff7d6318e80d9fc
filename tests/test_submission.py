from __future__ import annotations

import asyncio

import allure
import pytest

from product_studio.pipeline.errors import InvalidSubmissionError, TaskNotFoundError
from product_studio.pipeline.models import BatchMaterial, GenerationMode, ProductInfo, TaskStatus
from product_studio.pipeline.submission import BatchSubmission, StyleSource, TaskSubmission

pytestmark = [
    allure.epic("Inbound Boundary"),
    allure.feature("Submission & Status"),
]


def test_submit_task_persists_pending_record_with_default_models(studio) -> None:
    service = studio.runtime.submissions

    task = service.submit_task(
        TaskSubmission(
            product_image_path=studio.image("product.png"),
            style=StyleSource(style_template_id="premium-dark"),
            product_info=ProductInfo(),
        ),
    )

    stored = studio.repository.require_task(task.task_id)
    assert stored.status == TaskStatus.PENDING
    assert stored.generation_mode == GenerationMode.TEMPLATE
    assert stored.selected_models == studio.settings.pipeline.default_image_models
    assert stored.product_info is None


def test_submit_task_keeps_known_models_in_request_order(studio) -> None:
    task = studio.runtime.submissions.submit_task(
        TaskSubmission(
            product_image_path=studio.image("product.png"),
            style=StyleSource(reference_image_path=studio.image("reference.png")),
            models=("jimeng-seedream", "unknown-model", "openrouter-gemini-image"),
        ),
    )

    assert task.generation_mode == GenerationMode.REFERENCE
    assert task.selected_models == ("jimeng-seedream", "openrouter-gemini-image")


@pytest.mark.parametrize(
    ("style", "message"),
    [
        (StyleSource(), "requires a reference image"),
        (StyleSource(style_template_id="no-such-template"), "Unknown style template"),
        (
            StyleSource(reference_image_path="/missing/ref.png", style_template_id="premium-dark"),
            "not both",
        ),
        (StyleSource(reference_image_path="/missing/ref.png"), "Reference image not found"),
    ],
)
def test_submit_task_rejects_invalid_style_sources(studio, style, message) -> None:
    with pytest.raises(InvalidSubmissionError, match=message):
        studio.runtime.submissions.submit_task(
            TaskSubmission(product_image_path=studio.image("product.png"), style=style),
        )

    assert studio.repository.list_tasks() == []


def test_submit_task_rejects_missing_product_image(studio) -> None:
    with pytest.raises(InvalidSubmissionError, match="Product image not found"):
        studio.runtime.submissions.submit_task(
            TaskSubmission(
                product_image_path="/missing/product.png",
                style=StyleSource(style_template_id="natural-fresh"),
            ),
        )


@pytest.mark.parametrize("count", [0, 11])
def test_submit_batch_enforces_size_bounds(studio, count: int) -> None:
    materials = [BatchMaterial(path=studio.image(f"p{index}.png")) for index in range(count)]

    with pytest.raises(InvalidSubmissionError, match="between 1 and 10"):
        studio.runtime.submissions.submit_batch(
            BatchSubmission(
                materials=materials,
                style=StyleSource(style_template_id="natural-fresh"),
            ),
        )


def test_submit_batch_creates_children_in_one_step(studio) -> None:
    batch, children = studio.runtime.submissions.submit_batch(
        BatchSubmission(
            materials=studio.materials(10),
            style=StyleSource(reference_image_path=studio.image("reference.png")),
            product_info=ProductInfo(target_audience="families"),
        ),
    )

    assert batch.total_count == 10
    assert len(children) == 10
    assert children[4].product_info is not None
    assert children[4].product_info.product_name == "Product 4"
    assert children[4].product_info.target_audience == "families"


def test_task_status_reports_progress_and_description(studio) -> None:
    service = studio.runtime.submissions
    task = studio.template_task()

    pending = service.task_status(task.task_id)
    assert pending.progress == 0
    assert pending.step_description == "Waiting to start..."

    asyncio.run(studio.runtime.run_task(task.task_id))
    done = service.task_status(task.task_id).to_dict()

    assert done["status"] == "completed"
    assert done["progress"] == 100
    assert done["result_image_path"]
    assert done["style_analysis"]["layout"]
    assert done["used_models"]["prompt_synthesis"] == "local"


def test_batch_status_lists_children_in_order(studio) -> None:
    batch, children = studio.runtime.submissions.submit_batch(
        BatchSubmission(
            materials=studio.materials(3),
            style=StyleSource(style_template_id="natural-fresh"),
        ),
    )
    studio.providers.fail_content_for.add(b"product-0.png")
    asyncio.run(studio.runtime.run_batch(batch.batch_id))

    report = studio.runtime.submissions.batch_status(batch.batch_id).to_dict()

    assert report["status"] == "partial_failed"
    assert report["progress"] == 100
    assert [child["task_id"] for child in report["children"]] == [
        child.task_id for child in children
    ]
    assert report["children"][0]["failed_step"] == 2
    assert report["children"][1]["status"] == "completed"


def test_cost_report_summarizes_ledger(studio) -> None:
    task = studio.template_task()
    asyncio.run(studio.runtime.run_task(task.task_id))

    report = studio.runtime.submissions.cost_report(task.task_id)

    assert len(report.entries) == 2
    assert report.summary is not None
    assert report.summary.calls == 2
    assert report.total_cost == pytest.approx(sum(entry.amount for entry in report.entries))


def test_task_status_splits_the_ledger_sum_by_currency_class(studio) -> None:
    task = studio.template_task()
    asyncio.run(studio.runtime.run_task(task.task_id))

    report = studio.runtime.submissions.task_status(task.task_id)
    entries = studio.repository.list_cost_entries(task.task_id)

    assert report.cost is not None
    for currency, amount in report.cost.by_class.items():
        expected = sum(entry.amount for entry in entries if entry.currency_class == currency)
        assert amount == pytest.approx(expected)
    assert sum(report.cost.by_class.values()) == pytest.approx(report.task.total_cost)
    assert report.to_dict()["cost_by_class"].keys() == {"metered_usd", "fixed_cny"}


def test_status_of_unknown_task_raises(studio) -> None:
    with pytest.raises(TaskNotFoundError):
        studio.runtime.submissions.task_status("missing")
