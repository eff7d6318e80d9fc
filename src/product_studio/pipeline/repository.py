"""Durable store for generation tasks, batches, cost entries and ratings."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from product_studio.pipeline.errors import (
    BatchNotFoundError,
    InvalidSubmissionError,
    TaskNotFoundError,
)
from product_studio.pipeline.models import (
    TOTAL_STEPS,
    BatchStatus,
    BatchTaskCreate,
    BatchTaskView,
    ContentAnalysis,
    CostEntryView,
    CostMetadata,
    CurrencyClass,
    GenerationMode,
    ProductInfo,
    RatingInput,
    RatingView,
    ResultImage,
    Stage,
    StyleAnalysis,
    TaskCreate,
    TaskStatus,
    TaskView,
    UsedModels,
    derive_batch_status,
)
from product_studio.pipeline.ratings import validate_rating
from product_studio.storage.alembic_runner import upgrade_head
from product_studio.storage.common import (
    SqlitePolicy,
    build_sqlite_engine,
    db_now,
    from_db_datetime,
    utc_now,
)
from product_studio.storage.sqlmodel_models import (
    BatchTask,
    CostEntry,
    GenerationTask,
    Rating,
)


class PipelineRepository:
    """Task, batch and ledger persistence facade backed by SQLModel + SQLite.

    Stage outputs cross this boundary as typed records; JSON text lives only
    in the table columns.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path, SqlitePolicy(busy_timeout_ms=busy_timeout_ms))

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- creation ---------------------------------------------------------

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Create a standalone task in `pending`."""

        now = utc_now()
        with Session(self.engine) as session:
            row = _new_task_row(
                task_id=payload.task_id or str(uuid4()),
                payload=payload,
                batch_id=None,
                batch_index=None,
                now=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def create_batch(
        self,
        payload: BatchTaskCreate,
        *,
        batch_id: str | None = None,
    ) -> tuple[BatchTaskView, list[TaskView]]:
        """Create a batch and all of its children in `pending`, in one transaction."""

        now = utc_now()
        batch_id = batch_id or str(uuid4())
        with Session(self.engine) as session:
            batch = BatchTask(
                batch_id=batch_id,
                status=BatchStatus.PENDING.value,
                generation_mode=payload.generation_mode.value,
                style_template_id=payload.style_template_id,
                reference_image_path=payload.reference_image_path,
                reference_name=payload.reference_name,
                reference_category=payload.reference_category,
                product_info_json=_dump_optional(payload.product_info),
                selected_models_json=json.dumps(list(payload.selected_models)),
                image_resolution=payload.image_resolution,
                total_count=len(payload.materials),
                completed_count=0,
                failed_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(batch)
            session.flush()
            children: list[GenerationTask] = []
            for index, material in enumerate(payload.materials):
                child_payload = TaskCreate(
                    product_image_path=material.path,
                    generation_mode=payload.generation_mode,
                    selected_models=payload.selected_models,
                    reference_image_path=payload.reference_image_path,
                    style_template_id=payload.style_template_id,
                    reference_name=payload.reference_name,
                    reference_category=payload.reference_category,
                    product_info=_child_product_info(payload.product_info, material.name),
                    image_resolution=payload.image_resolution,
                )
                row = _new_task_row(
                    task_id=str(uuid4()),
                    payload=child_payload,
                    batch_id=batch_id,
                    batch_index=index,
                    now=now,
                )
                session.add(row)
                children.append(row)
            session.commit()
            session.refresh(batch)
            for row in children:
                session.refresh(row)
            return _to_batch_view(batch), [_to_task_view(row) for row in children]

    # -- reads ------------------------------------------------------------

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(GenerationTask, task_id)
            return _to_task_view(row) if row is not None else None

    def require_task(self, task_id: str) -> TaskView:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_batch(self, batch_id: str) -> BatchTaskView | None:
        with Session(self.engine) as session:
            row = session.get(BatchTask, batch_id)
            return _to_batch_view(row) if row is not None else None

    def require_batch(self, batch_id: str) -> BatchTaskView:
        batch = self.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def list_batch_children(
        self,
        batch_id: str,
        *,
        statuses: set[TaskStatus] | None = None,
    ) -> list[TaskView]:
        """Return children of one batch ordered by their index."""

        with Session(self.engine) as session:
            stmt = select(GenerationTask).where(GenerationTask.batch_id == batch_id)
            if statuses:
                stmt = stmt.where(col(GenerationTask.status).in_([s.value for s in statuses]))
            rows = session.exec(stmt.order_by(col(GenerationTask.batch_index).asc())).all()
            return [_to_task_view(row) for row in rows]

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, newest first."""

        with Session(self.engine) as session:
            stmt = select(GenerationTask)
            if status is not None:
                stmt = stmt.where(GenerationTask.status == status.value)
            rows = session.exec(
                stmt.order_by(col(GenerationTask.created_at).desc()).limit(limit),
            ).all()
            return [_to_task_view(row) for row in rows]

    # -- task updates -----------------------------------------------------

    def mark_stage(self, task_id: str, stage: Stage) -> None:
        """Set status and step cursor together for the stage about to run."""

        self._update_task(task_id, status=stage.status.value, current_step=int(stage))

    def reset_for_resume(self, task_id: str) -> None:
        """Clear failure metadata ahead of a new attempt; stage outputs stay."""

        self._update_task(task_id, failed_step=None, error_message=None)

    def save_style_analysis(self, task_id: str, analysis: StyleAnalysis) -> None:
        self._update_task(task_id, style_analysis_json=_dump(analysis))

    def save_content_analysis(self, task_id: str, analysis: ContentAnalysis) -> None:
        self._update_task(task_id, content_analysis_json=_dump(analysis))

    def save_prompt(self, task_id: str, prompt: str) -> None:
        self._update_task(task_id, generated_prompt=prompt)

    def save_result_images(self, task_id: str, images: list[ResultImage]) -> None:
        """Persist the full result list and its first successful path as primary."""

        primary = next((image.path for image in images if image.succeeded), None)
        self._update_task(
            task_id,
            result_images_json=json.dumps(
                [image.to_dict() for image in images],
                ensure_ascii=False,
            ),
            result_image_path=primary,
        )

    def save_used_models(self, task_id: str, used_models: UsedModels) -> None:
        self._update_task(task_id, used_models_json=_dump(used_models))

    def fail_task(self, task_id: str, *, failed_step: int, message: str) -> None:
        self._update_task(
            task_id,
            status=TaskStatus.FAILED.value,
            failed_step=failed_step,
            error_message=message,
        )

    def complete_task(self, task_id: str, *, used_models: UsedModels | None = None) -> None:
        values: dict[str, Any] = {
            "status": TaskStatus.COMPLETED.value,
            "current_step": TOTAL_STEPS,
            "failed_step": None,
            "error_message": None,
            "completed_at": db_now(),
        }
        if used_models is not None:
            values["used_models_json"] = _dump(used_models)
        self._update_task(task_id, **values)

    def release_task(self, task_id: str) -> None:
        self._update_task(task_id, claimed_by=None)

    def _update_task(self, task_id: str, **values: Any) -> None:
        values["updated_at"] = db_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GenerationTask)
                .where(col(GenerationTask.task_id) == task_id)
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TaskNotFoundError(task_id)
            session.commit()

    # -- batch updates ----------------------------------------------------

    def set_batch_status(self, batch_id: str, status: BatchStatus) -> None:
        self._update_batch(batch_id, status=status.value)

    def attach_shared_analysis(
        self,
        batch_id: str,
        analysis: StyleAnalysis,
    ) -> tuple[StyleAnalysis, bool]:
        """Write the batch-wide style analysis once; children only ever read it.

        Returns the analysis now stored and whether this call wrote it. A later
        writer never replaces the stored value.
        """

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(BatchTask)
                .where(
                    col(BatchTask.batch_id) == batch_id,
                    col(BatchTask.shared_analysis_json).is_(None),
                )
                .values(shared_analysis_json=_dump(analysis), updated_at=db_now()),
            )
            session.commit()
            written = result.rowcount == 1
        stored = self.require_batch(batch_id).shared_analysis
        if stored is None:
            raise BatchNotFoundError(batch_id)
        return stored, written

    def acquire_batch(self, batch_id: str, *, owner: str) -> bool:
        """Take the run claim on a batch; False while another owner holds it."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(BatchTask)
                .where(
                    col(BatchTask.batch_id) == batch_id,
                    or_(
                        col(BatchTask.claimed_by).is_(None),
                        col(BatchTask.claimed_by) == owner,
                    ),
                )
                .values(claimed_by=owner, updated_at=db_now()),
            )
            session.commit()
            acquired = result.rowcount == 1
        if not acquired:
            self.require_batch(batch_id)
        return acquired

    def release_batch(self, batch_id: str, *, owner: str | None = None) -> None:
        """Drop the run claim; with `owner`, only when that owner still holds it."""

        if owner is None:
            self._update_batch(batch_id, claimed_by=None)
            return
        with Session(self.engine) as session:
            session.exec(
                sa_update(BatchTask)
                .where(
                    col(BatchTask.batch_id) == batch_id,
                    col(BatchTask.claimed_by) == owner,
                )
                .values(claimed_by=None, updated_at=db_now()),
            )
            session.commit()

    def recompute_batch_aggregate(self, batch_id: str) -> BatchTaskView:
        """Re-derive counters and status from the current snapshot of all children."""

        with Session(self.engine) as session:
            batch = session.get(BatchTask, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            statuses = session.exec(
                select(GenerationTask.status).where(GenerationTask.batch_id == batch_id),
            ).all()
            total = len(statuses)
            completed = sum(1 for status in statuses if status == TaskStatus.COMPLETED.value)
            failed = sum(1 for status in statuses if status == TaskStatus.FAILED.value)
            batch.total_count = total
            batch.completed_count = completed
            batch.failed_count = failed
            batch.status = derive_batch_status(
                total=total,
                completed=completed,
                failed=failed,
            ).value
            batch.updated_at = utc_now()
            session.add(batch)
            session.commit()
            session.refresh(batch)
            return _to_batch_view(batch)

    def _update_batch(self, batch_id: str, **values: Any) -> None:
        values["updated_at"] = db_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(BatchTask).where(col(BatchTask.batch_id) == batch_id).values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise BatchNotFoundError(batch_id)
            session.commit()

    # -- cost ledger ------------------------------------------------------

    def add_cost_entry(
        self,
        *,
        task_id: str,
        stage: int,
        amount: float,
        currency_class: CurrencyClass,
        metadata: CostMetadata | None = None,
    ) -> CostEntryView:
        """Append one ledger row."""

        metadata = metadata or CostMetadata()
        with Session(self.engine) as session:
            row = CostEntry(
                task_id=task_id,
                stage=stage,
                call_id=metadata.call_id,
                model=metadata.model,
                amount=amount,
                currency_class=currency_class.value,
                tokens_prompt=metadata.tokens_prompt,
                tokens_completion=metadata.tokens_completion,
                latency_ms=metadata.latency_ms,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_cost_view(row)

    def list_cost_entries(self, task_id: str) -> list[CostEntryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CostEntry)
                .where(CostEntry.task_id == task_id)
                .order_by(col(CostEntry.id).asc()),
            ).all()
            return [_to_cost_view(row) for row in rows]

    def list_batch_cost_entries(self, batch_id: str) -> list[CostEntryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CostEntry)
                .join(GenerationTask, col(GenerationTask.task_id) == col(CostEntry.task_id))
                .where(GenerationTask.batch_id == batch_id)
                .order_by(col(CostEntry.id).asc()),
            ).all()
            return [_to_cost_view(row) for row in rows]

    def recompute_task_total(self, task_id: str) -> float:
        """Set the task total to the sum of its entries and return it.

        The sum is taken inside the UPDATE so concurrent writers cannot leave a
        stale total behind.
        """

        entries_sum = (
            select(func.coalesce(func.sum(CostEntry.amount), 0.0))
            .where(CostEntry.task_id == task_id)
            .scalar_subquery()
        )
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GenerationTask)
                .where(col(GenerationTask.task_id) == task_id)
                .values(total_cost=entries_sum, updated_at=db_now()),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TaskNotFoundError(task_id)
            total = session.exec(
                select(GenerationTask.total_cost).where(GenerationTask.task_id == task_id),
            ).one()
            session.commit()
            return float(total)

    # -- ratings ----------------------------------------------------------

    def upsert_rating(self, payload: RatingInput) -> RatingView:
        """Create or replace the rating for (task, image); one task-level rating per task.

        An image rating must name a successfully generated image of the task;
        its provider and model are taken from that result.
        """

        validate_rating(payload)
        task = self.require_task(payload.task_id)
        provider: str | None = None
        model: str | None = None
        if payload.image_path is not None:
            image = next(
                (
                    result
                    for result in task.result_images
                    if result.succeeded and result.path == payload.image_path
                ),
                None,
            )
            if image is None:
                raise InvalidSubmissionError(
                    f"Task {payload.task_id} has no generated image {payload.image_path}",
                )
            provider, model = image.provider, image.model

        now = db_now()
        values: dict[str, Any] = {
            "task_id": payload.task_id,
            "image_key": payload.image_path or "",
            "provider": provider,
            "model": model,
            "overall": payload.overall,
            **payload.dimensions(),
            "comment": payload.comment,
            "created_at": now,
            "updated_at": now,
        }
        statement = sqlite_insert(Rating).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["task_id", "image_key"],
            set_={
                name: statement.excluded[name]
                for name in values
                if name not in {"task_id", "image_key", "created_at"}
            },
        )
        with Session(self.engine) as session:
            session.exec(statement)
            session.commit()
            row = session.exec(
                select(Rating).where(
                    Rating.task_id == payload.task_id,
                    Rating.image_key == values["image_key"],
                ),
            ).one()
            return _to_rating_view(row)

    def list_ratings(self, task_id: str) -> list[RatingView]:
        """Task-level rating first, then image ratings newest first."""

        self.require_task(task_id)
        with Session(self.engine) as session:
            rows = session.exec(
                select(Rating)
                .where(Rating.task_id == task_id)
                .order_by(col(Rating.created_at).desc(), col(Rating.id).desc()),
            ).all()
            views = [_to_rating_view(row) for row in rows]
        return sorted(views, key=lambda view: view.image_path is not None)

    # -- worker claims ----------------------------------------------------

    def claim_pending_task(self, *, worker_id: str) -> TaskView | None:
        """Atomically claim one standalone pending task."""

        while True:
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(GenerationTask)
                    .where(
                        col(GenerationTask.batch_id).is_(None),
                        GenerationTask.status == TaskStatus.PENDING.value,
                        col(GenerationTask.claimed_by).is_(None),
                    )
                    .order_by(col(GenerationTask.created_at).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None
                result = session.exec(
                    sa_update(GenerationTask)
                    .where(
                        col(GenerationTask.task_id) == candidate.task_id,
                        col(GenerationTask.claimed_by).is_(None),
                    )
                    .values(claimed_by=worker_id, updated_at=db_now()),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                session.commit()
                claimed = session.exec(
                    select(GenerationTask).where(GenerationTask.task_id == candidate.task_id),
                ).one()
                return _to_task_view(claimed)

    def claim_pending_batch(self, *, worker_id: str) -> BatchTaskView | None:
        """Atomically claim one pending batch."""

        while True:
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(BatchTask)
                    .where(
                        BatchTask.status == BatchStatus.PENDING.value,
                        col(BatchTask.claimed_by).is_(None),
                    )
                    .order_by(col(BatchTask.created_at).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None
                result = session.exec(
                    sa_update(BatchTask)
                    .where(
                        col(BatchTask.batch_id) == candidate.batch_id,
                        col(BatchTask.claimed_by).is_(None),
                    )
                    .values(claimed_by=worker_id, updated_at=db_now()),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                session.commit()
                claimed = session.exec(
                    select(BatchTask).where(BatchTask.batch_id == candidate.batch_id),
                ).one()
                return _to_batch_view(claimed)


def _new_task_row(
    *,
    task_id: str,
    payload: TaskCreate,
    batch_id: str | None,
    batch_index: int | None,
    now: datetime,
) -> GenerationTask:
    return GenerationTask(
        task_id=task_id,
        batch_id=batch_id,
        batch_index=batch_index,
        status=TaskStatus.PENDING.value,
        current_step=0,
        total_steps=TOTAL_STEPS,
        generation_mode=payload.generation_mode.value,
        style_template_id=payload.style_template_id,
        reference_image_path=payload.reference_image_path,
        product_image_path=payload.product_image_path,
        reference_name=payload.reference_name,
        reference_category=payload.reference_category,
        product_info_json=_dump_optional(payload.product_info),
        selected_models_json=json.dumps(list(payload.selected_models)),
        image_resolution=payload.image_resolution,
        total_cost=0.0,
        created_at=now,
        updated_at=now,
    )


def _child_product_info(shared: ProductInfo | None, name: str | None) -> ProductInfo | None:
    if name is None:
        return shared
    if shared is None:
        return ProductInfo(product_name=name)
    return ProductInfo(
        product_name=name,
        product_category=shared.product_category,
        selling_points=shared.selling_points,
        target_audience=shared.target_audience,
        brand_tone=shared.brand_tone,
    )


def _dump(record: Any) -> str:
    return json.dumps(record.to_dict(), ensure_ascii=False)


def _dump_optional(record: Any) -> str | None:
    return _dump(record) if record is not None else None


def _load_dict(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    payload = json.loads(raw)
    return payload if isinstance(payload, dict) else None


def _load_models(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    payload = json.loads(raw)
    return tuple(str(item) for item in payload) if isinstance(payload, list) else ()


def _load_images(raw: str | None) -> list[ResultImage]:
    if not raw:
        return []
    payload = json.loads(raw)
    if not isinstance(payload, list):
        return []
    return [ResultImage.from_dict(item) for item in payload if isinstance(item, dict)]


def _to_task_view(row: GenerationTask) -> TaskView:
    style = _load_dict(row.style_analysis_json)
    content = _load_dict(row.content_analysis_json)
    product_info = _load_dict(row.product_info_json)
    used_models = _load_dict(row.used_models_json)
    return TaskView(
        task_id=row.task_id,
        status=TaskStatus(row.status),
        current_step=row.current_step,
        total_steps=row.total_steps,
        generation_mode=GenerationMode(row.generation_mode),
        product_image_path=row.product_image_path,
        reference_image_path=row.reference_image_path,
        style_template_id=row.style_template_id,
        batch_id=row.batch_id,
        batch_index=row.batch_index,
        selected_models=_load_models(row.selected_models_json),
        product_info=ProductInfo.from_dict(product_info) if product_info is not None else None,
        reference_name=row.reference_name,
        reference_category=row.reference_category,
        image_resolution=row.image_resolution,
        style_analysis=StyleAnalysis.from_dict(style) if style is not None else None,
        content_analysis=ContentAnalysis.from_dict(content) if content is not None else None,
        generated_prompt=row.generated_prompt,
        result_images=_load_images(row.result_images_json),
        result_image_path=row.result_image_path,
        used_models=UsedModels.from_dict(used_models) if used_models is not None else None,
        failed_step=row.failed_step,
        error_message=row.error_message,
        total_cost=row.total_cost,
        claimed_by=row.claimed_by,
        created_at=from_db_datetime(row.created_at),
        updated_at=from_db_datetime(row.updated_at),
        completed_at=(
            from_db_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )


def _to_batch_view(row: BatchTask) -> BatchTaskView:
    shared = _load_dict(row.shared_analysis_json)
    product_info = _load_dict(row.product_info_json)
    return BatchTaskView(
        batch_id=row.batch_id,
        status=BatchStatus(row.status),
        generation_mode=GenerationMode(row.generation_mode),
        reference_image_path=row.reference_image_path,
        style_template_id=row.style_template_id,
        reference_name=row.reference_name,
        reference_category=row.reference_category,
        product_info=ProductInfo.from_dict(product_info) if product_info is not None else None,
        selected_models=_load_models(row.selected_models_json),
        image_resolution=row.image_resolution,
        total_count=row.total_count,
        completed_count=row.completed_count,
        failed_count=row.failed_count,
        shared_analysis=StyleAnalysis.from_dict(shared) if shared is not None else None,
        claimed_by=row.claimed_by,
        created_at=from_db_datetime(row.created_at),
        updated_at=from_db_datetime(row.updated_at),
    )


def _to_cost_view(row: CostEntry) -> CostEntryView:
    return CostEntryView(
        entry_id=int(row.id or 0),
        task_id=row.task_id,
        stage=row.stage,
        call_id=row.call_id,
        model=row.model,
        amount=row.amount,
        currency_class=CurrencyClass(row.currency_class),
        tokens_prompt=row.tokens_prompt,
        tokens_completion=row.tokens_completion,
        latency_ms=row.latency_ms,
        created_at=from_db_datetime(row.created_at),
    )


def _to_rating_view(row: Rating) -> RatingView:
    return RatingView(
        rating_id=int(row.id or 0),
        task_id=row.task_id,
        image_path=row.image_key or None,
        provider=row.provider,
        model=row.model,
        overall=row.overall,
        quality=row.quality,
        style_match=row.style_match,
        fidelity=row.fidelity,
        creativity=row.creativity,
        comment=row.comment,
        created_at=from_db_datetime(row.created_at),
        updated_at=from_db_datetime(row.updated_at),
    )
