"""SQLModel ORM tables for tasks, batches, the cost ledger and ratings."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class BatchTask(SQLModel, table=True):
    __tablename__ = "batch_tasks"  # type: ignore[bad-override]

    batch_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    generation_mode: str
    style_template_id: str | None = None
    reference_image_path: str | None = None
    reference_name: str | None = None
    reference_category: str | None = None
    product_info_json: str | None = Field(default=None, sa_column=Column(Text))
    selected_models_json: str = Field(sa_column=Column(Text, nullable=False))
    image_resolution: str | None = None
    total_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    shared_analysis_json: str | None = Field(default=None, sa_column=Column(Text))
    claimed_by: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class GenerationTask(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_batch_index", "batch_id", "batch_index"),)

    task_id: str = Field(primary_key=True)
    batch_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("batch_tasks.batch_id", ondelete="CASCADE"),
            nullable=True,
            index=True,
        ),
    )
    batch_index: int | None = None
    status: str = Field(index=True)
    current_step: int = 0
    total_steps: int = 4
    generation_mode: str
    style_template_id: str | None = None
    reference_image_path: str | None = None
    product_image_path: str
    reference_name: str | None = None
    reference_category: str | None = None
    product_info_json: str | None = Field(default=None, sa_column=Column(Text))
    selected_models_json: str = Field(sa_column=Column(Text, nullable=False))
    image_resolution: str | None = None
    style_analysis_json: str | None = Field(default=None, sa_column=Column(Text))
    content_analysis_json: str | None = Field(default=None, sa_column=Column(Text))
    generated_prompt: str | None = Field(default=None, sa_column=Column(Text))
    result_images_json: str | None = Field(default=None, sa_column=Column(Text))
    result_image_path: str | None = None
    used_models_json: str | None = Field(default=None, sa_column=Column(Text))
    failed_step: int | None = None
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    total_cost: float = 0.0
    claimed_by: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class CostEntry(SQLModel, table=True):
    __tablename__ = "cost_entries"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_cost_entries_task_stage", "task_id", "stage"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    stage: int
    call_id: str | None = Field(default=None, index=True)
    model: str | None = None
    amount: float
    currency_class: str = Field(index=True)
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    latency_ms: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Rating(SQLModel, table=True):
    __tablename__ = "ratings"  # type: ignore[bad-override]
    # image_key is "" for the task-level rating so the pair stays unique
    __table_args__ = (UniqueConstraint("task_id", "image_key", name="uq_ratings_task_image"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    image_key: str = ""
    provider: str | None = None
    model: str | None = None
    overall: int
    quality: int | None = None
    style_match: int | None = None
    fidelity: int | None = None
    creativity: int | None = None
    comment: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
