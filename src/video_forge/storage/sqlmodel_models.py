"""SQLModel ORM tables for videos and transcode tasks."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class Video(SQLModel, table=True):
    __tablename__ = "videos"  # type: ignore[bad-override]

    video_id: str = Field(primary_key=True)
    original_name: str
    size_bytes: int = Field(sa_column=Column(BigInteger, nullable=False))
    path: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TranscodeTask(SQLModel, table=True):
    __tablename__ = "transcode_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_transcode_tasks_queue", "status", "created_at"),
        CheckConstraint(
            "status IN ('QUEUED', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="ck_transcode_tasks_status",
        ),
    )

    task_id: str = Field(primary_key=True)
    video_id: str = Field(
        sa_column=Column(
            ForeignKey("videos.video_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    variant: str
    status: str = Field(index=True)
    progress: int | None = None
    current_bitrate: str | None = None
    retries: int = Field(default=0)
    error: str | None = Field(default=None, sa_column=Column(Text))
    output_path: str | None = None
    output_size: int | None = Field(default=None, sa_column=Column(BigInteger))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TranscodeTaskEvent(SQLModel, table=True):
    __tablename__ = "transcode_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_transcode_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("transcode_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
