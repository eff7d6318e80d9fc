"""CLI entrypoint for product-studio."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from product_studio import __version__
from product_studio.pipeline.controllers import (
    BatchRefCommand,
    BatchSubmitCommand,
    CostShowCommand,
    StudioCliController,
    StyleOptions,
    TaskListCommand,
    TaskRateCommand,
    TaskRefCommand,
    TaskRegenerateCommand,
    TaskRunCommand,
    TaskSubmitCommand,
    WorkerCommand,
)
from product_studio.pipeline.errors import PipelineError
from product_studio.pipeline.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
STUDIO_CONTROLLER = StudioCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


def _style_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by `task submit` and `batch submit`."""

    options = [
        click.option(
            "--reference-image",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="Reference image whose layout and style should be reproduced.",
        ),
        click.option("--template", "template_id", default=None, help="Preset style template id."),
        click.option("--reference-name", default=None, help="Label of the reference design."),
        click.option("--reference-category", default=None, help="Category of the reference."),
        click.option(
            "--model",
            "models",
            multiple=True,
            help="Image model id. Can be repeated; defaults apply when omitted.",
        ),
        click.option("--product-name", default=None, help="Product name."),
        click.option("--product-category", default=None, help="Product category."),
        click.option("--selling-points", default=None, help="Key selling points."),
        click.option("--target-audience", default=None, help="Target audience."),
        click.option("--brand-tone", multiple=True, help="Brand tone keyword. Can be repeated."),
        click.option("--resolution", default=None, help="Requested output resolution."),
        click.option(
            "--wait/--no-wait",
            default=False,
            show_default=True,
            help="Run the pipeline in-process right after submission.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _collect_style(params: dict[str, Any]) -> StyleOptions:
    return StyleOptions(
        reference_image=params["reference_image"],
        template_id=params["template_id"],
        reference_name=params["reference_name"],
        reference_category=params["reference_category"],
        models=params["models"],
        product_name=params["product_name"],
        product_category=params["product_category"],
        selling_points=params["selling_points"],
        target_audience=params["target_audience"],
        brand_tone=params["brand_tone"],
        resolution=params["resolution"],
    )


@click.group()
@click.version_option(version=__version__, prog_name="product-studio")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def product_studio(log_level: str) -> None:
    """E-commerce product image studio CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@product_studio.group()
def task() -> None:
    """Single task commands."""


@task.command("submit")
@_DB_PATH_OPTION
@click.option(
    "--product-image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Product photo to place into the generated image.",
)
@_style_options
def task_submit(db_path: Path | None, product_image: Path, **params: Any) -> None:
    """Submit one generation task (reference image **or** template)."""

    wait = params.pop("wait")
    _run(
        lambda: STUDIO_CONTROLLER.submit_task(
            TaskSubmitCommand(
                db_path=db_path,
                product_image=product_image,
                options=_collect_style(params),
                wait=wait,
            ),
        ),
    )


@task.command("run")
@_DB_PATH_OPTION
@click.argument("task_id")
@click.option(
    "--from-stage",
    "start_stage",
    type=click.IntRange(min=1, max=4),
    default=None,
    help="Stage to start from; earlier stage outputs must already be stored.",
)
def task_run(db_path: Path | None, task_id: str, start_stage: int | None) -> None:
    """Run a task from stage 1 (or `--from-stage`)."""

    _run(
        lambda: STUDIO_CONTROLLER.run_task(
            TaskRunCommand(db_path=db_path, task_id=task_id, start_stage=start_stage),
        ),
    )


@task.command("retry")
@_DB_PATH_OPTION
@click.argument("task_id")
def task_retry(db_path: Path | None, task_id: str) -> None:
    """Resume a failed task at its failed stage."""

    _run(lambda: STUDIO_CONTROLLER.retry_task(TaskRefCommand(db_path=db_path, task_id=task_id)))


@task.command("status")
@_DB_PATH_OPTION
@click.argument("task_id")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON.")
def task_status(db_path: Path | None, task_id: str, as_json: bool) -> None:
    """Show task progress, outputs and cost."""

    _run(
        lambda: STUDIO_CONTROLLER.task_status(
            TaskRefCommand(db_path=db_path, task_id=task_id, as_json=as_json),
        ),
    )


@task.command("regenerate")
@_DB_PATH_OPTION
@click.argument("task_id")
@click.option(
    "--model",
    "models",
    multiple=True,
    required=True,
    help="Image model id. Can be repeated.",
)
def task_regenerate(db_path: Path | None, task_id: str, models: tuple[str, ...]) -> None:
    """Generate extra images from the stored prompt."""

    _run(
        lambda: STUDIO_CONTROLLER.regenerate(
            TaskRegenerateCommand(db_path=db_path, task_id=task_id, models=models),
        ),
    )


@task.command("list")
@_DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max number of tasks.",
)
def task_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _run(
        lambda: STUDIO_CONTROLLER.list_tasks(
            TaskListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


_SCORE = click.IntRange(min=1, max=5)


@task.command("rate")
@_DB_PATH_OPTION
@click.argument("task_id")
@click.option("--overall", type=_SCORE, required=True, help="Overall score, 1-5.")
@click.option(
    "--image",
    "image_path",
    default=None,
    help="Stored path of one generated image; rates the whole task when omitted.",
)
@click.option("--quality", type=_SCORE, default=None, help="Image quality, 1-5.")
@click.option("--style-match", type=_SCORE, default=None, help="Match with the style, 1-5.")
@click.option("--fidelity", type=_SCORE, default=None, help="Product fidelity, 1-5.")
@click.option("--creativity", type=_SCORE, default=None, help="Creativity, 1-5.")
@click.option("--comment", default=None, help="Free-text comment.")
def task_rate(db_path: Path | None, task_id: str, **scores: Any) -> None:
    """Rate a task, or one of its generated images; rating again replaces the score."""

    _run(
        lambda: STUDIO_CONTROLLER.rate_task(
            TaskRateCommand(db_path=db_path, task_id=task_id, **scores),
        ),
    )


@task.command("ratings")
@_DB_PATH_OPTION
@click.argument("task_id")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON.")
def task_ratings(db_path: Path | None, task_id: str, as_json: bool) -> None:
    """Show the task rating, image ratings and per-dimension averages."""

    _run(
        lambda: STUDIO_CONTROLLER.show_ratings(
            TaskRefCommand(db_path=db_path, task_id=task_id, as_json=as_json),
        ),
    )


@product_studio.group()
def batch() -> None:
    """Batch commands: one style applied to many products."""


@batch.command("submit")
@_DB_PATH_OPTION
@click.option(
    "--product-image",
    "product_images",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    multiple=True,
    required=True,
    help="Product photo. Repeat for each product.",
)
@click.option(
    "--name",
    "names",
    multiple=True,
    help="Product name per image, in the same order as --product-image.",
)
@_style_options
def batch_submit(
    db_path: Path | None,
    product_images: tuple[Path, ...],
    names: tuple[str, ...],
    **params: Any,
) -> None:
    """Submit a batch of products sharing one reference image or template."""

    wait = params.pop("wait")
    _run(
        lambda: STUDIO_CONTROLLER.submit_batch(
            BatchSubmitCommand(
                db_path=db_path,
                product_images=product_images,
                names=names,
                options=_collect_style(params),
                wait=wait,
            ),
        ),
    )


@batch.command("run")
@_DB_PATH_OPTION
@click.argument("batch_id")
def batch_run(db_path: Path | None, batch_id: str) -> None:
    """Run every non-completed child of a batch."""

    _run(lambda: STUDIO_CONTROLLER.run_batch(BatchRefCommand(db_path=db_path, batch_id=batch_id)))


@batch.command("retry")
@_DB_PATH_OPTION
@click.argument("batch_id")
def batch_retry(db_path: Path | None, batch_id: str) -> None:
    """Retry only the failed children of a batch."""

    _run(
        lambda: STUDIO_CONTROLLER.retry_batch(BatchRefCommand(db_path=db_path, batch_id=batch_id)),
    )


@batch.command("status")
@_DB_PATH_OPTION
@click.argument("batch_id")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON.")
def batch_status(db_path: Path | None, batch_id: str, as_json: bool) -> None:
    """Show batch aggregate and per-child status."""

    _run(
        lambda: STUDIO_CONTROLLER.batch_status(
            BatchRefCommand(db_path=db_path, batch_id=batch_id, as_json=as_json),
        ),
    )


@product_studio.command("worker")
@_DB_PATH_OPTION
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Process one batch or task, or loop until idle.",
)
@click.option(
    "--max-items",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed batches and tasks in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before the loop exits.",
)
@click.option(
    "--poll-interval",
    "poll_interval_seconds",
    type=click.FloatRange(min=0),
    default=2.0,
    show_default=True,
    help="Seconds between polls when the queue is empty.",
)
def worker(
    db_path: Path | None,
    once: bool,
    max_items: int | None,
    max_idle_polls: int,
    poll_interval_seconds: float,
) -> None:
    """Run the pipeline worker over pending batches and tasks."""

    _run(
        lambda: STUDIO_CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_items=max_items,
                max_idle_polls=max_idle_polls,
                poll_interval_seconds=poll_interval_seconds,
            ),
        ),
    )


@product_studio.group()
def cost() -> None:
    """Cost ledger commands."""


@cost.command("show")
@_DB_PATH_OPTION
@click.option("--task-id", default=None, help="Task to report.")
@click.option("--batch-id", default=None, help="Batch to report (all children).")
def cost_show(db_path: Path | None, task_id: str | None, batch_id: str | None) -> None:
    """Show ledger entries and spend per currency class."""

    _run(
        lambda: STUDIO_CONTROLLER.show_cost(
            CostShowCommand(db_path=db_path, task_id=task_id, batch_id=batch_id),
        ),
    )


@product_studio.command("templates")
@click.option("--category", default=None, help="Optional category filter.")
def templates(category: str | None) -> None:
    """List preset style templates."""

    _run(lambda: STUDIO_CONTROLLER.templates(category))


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (PipelineError, ValueError, FileNotFoundError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    product_studio()
