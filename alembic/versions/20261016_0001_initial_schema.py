"""Initial schema: generation tasks, batches and the cost ledger."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "batch_tasks",
        sa.Column("batch_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("generation_mode", sa.String(), nullable=False),
        sa.Column("style_template_id", sa.String(), nullable=True),
        sa.Column("reference_image_path", sa.String(), nullable=True),
        sa.Column("reference_name", sa.String(), nullable=True),
        sa.Column("reference_category", sa.String(), nullable=True),
        sa.Column("product_info_json", sa.Text(), nullable=True),
        sa.Column("selected_models_json", sa.Text(), nullable=False),
        sa.Column("image_resolution", sa.String(), nullable=True),
        sa.Column("total_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shared_analysis_json", sa.Text(), nullable=True),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("batch_id"),
    )
    op.create_index("ix_batch_tasks_status", "batch_tasks", ["status"])
    op.create_index("ix_batch_tasks_claimed_by", "batch_tasks", ["claimed_by"])

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("batch_id", sa.String(), nullable=True),
        sa.Column("batch_index", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_steps", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("generation_mode", sa.String(), nullable=False),
        sa.Column("style_template_id", sa.String(), nullable=True),
        sa.Column("reference_image_path", sa.String(), nullable=True),
        sa.Column("product_image_path", sa.String(), nullable=False),
        sa.Column("reference_name", sa.String(), nullable=True),
        sa.Column("reference_category", sa.String(), nullable=True),
        sa.Column("product_info_json", sa.Text(), nullable=True),
        sa.Column("selected_models_json", sa.Text(), nullable=False),
        sa.Column("image_resolution", sa.String(), nullable=True),
        sa.Column("style_analysis_json", sa.Text(), nullable=True),
        sa.Column("content_analysis_json", sa.Text(), nullable=True),
        sa.Column("generated_prompt", sa.Text(), nullable=True),
        sa.Column("result_images_json", sa.Text(), nullable=True),
        sa.Column("result_image_path", sa.String(), nullable=True),
        sa.Column("used_models_json", sa.Text(), nullable=True),
        sa.Column("failed_step", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("total_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["batch_id"], ["batch_tasks.batch_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_batch_id", "tasks", ["batch_id"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_claimed_by", "tasks", ["claimed_by"])
    op.create_index("idx_tasks_batch_index", "tasks", ["batch_id", "batch_index"])

    op.create_table(
        "cost_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("call_id", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency_class", sa.String(), nullable=False),
        sa.Column("tokens_prompt", sa.Integer(), nullable=True),
        sa.Column("tokens_completion", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cost_entries_task_id", "cost_entries", ["task_id"])
    op.create_index("ix_cost_entries_call_id", "cost_entries", ["call_id"])
    op.create_index("ix_cost_entries_currency_class", "cost_entries", ["currency_class"])
    op.create_index("idx_cost_entries_task_stage", "cost_entries", ["task_id", "stage"])


def downgrade() -> None:
    op.drop_index("idx_cost_entries_task_stage", table_name="cost_entries")
    op.drop_index("ix_cost_entries_currency_class", table_name="cost_entries")
    op.drop_index("ix_cost_entries_call_id", table_name="cost_entries")
    op.drop_index("ix_cost_entries_task_id", table_name="cost_entries")
    op.drop_table("cost_entries")
    op.drop_index("idx_tasks_batch_index", table_name="tasks")
    op.drop_index("ix_tasks_claimed_by", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_batch_id", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_batch_tasks_claimed_by", table_name="batch_tasks")
    op.drop_index("ix_batch_tasks_status", table_name="batch_tasks")
    op.drop_table("batch_tasks")
