"""Ratings of tasks and generated images."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0002"
down_revision = "20261016_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("image_key", sa.String(), nullable=False, server_default=""),
        sa.Column("provider", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("overall", sa.Integer(), nullable=False),
        sa.Column("quality", sa.Integer(), nullable=True),
        sa.Column("style_match", sa.Integer(), nullable=True),
        sa.Column("fidelity", sa.Integer(), nullable=True),
        sa.Column("creativity", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "image_key", name="uq_ratings_task_image"),
    )
    op.create_index("ix_ratings_task_id", "ratings", ["task_id"])


def downgrade() -> None:
    op.drop_index("ix_ratings_task_id", table_name="ratings")
    op.drop_table("ratings")
