"""Initial video and transcode task schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "videos",
        sa.Column("video_id", sa.String(), nullable=False),
        sa.Column("original_name", sa.String(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("video_id"),
    )

    op.create_table(
        "transcode_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("video_id", sa.String(), nullable=False),
        sa.Column("variant", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=True),
        sa.Column("current_bitrate", sa.String(), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("output_path", sa.String(), nullable=True),
        sa.Column("output_size", sa.BigInteger(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["video_id"], ["videos.video_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
        sa.CheckConstraint(
            "status IN ('QUEUED', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="ck_transcode_tasks_status",
        ),
    )
    op.create_index("ix_transcode_tasks_video_id", "transcode_tasks", ["video_id"])
    op.create_index("ix_transcode_tasks_status", "transcode_tasks", ["status"])
    op.create_index("idx_transcode_tasks_queue", "transcode_tasks", ["status", "created_at"])

    op.create_table(
        "transcode_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["task_id"],
            ["transcode_tasks.task_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_transcode_task_events_task_time",
        "transcode_task_events",
        ["task_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_transcode_task_events_task_time", table_name="transcode_task_events")
    op.drop_table("transcode_task_events")
    op.drop_index("idx_transcode_tasks_queue", table_name="transcode_tasks")
    op.drop_index("ix_transcode_tasks_status", table_name="transcode_tasks")
    op.drop_index("ix_transcode_tasks_video_id", table_name="transcode_tasks")
    op.drop_table("transcode_tasks")
    op.drop_table("videos")
