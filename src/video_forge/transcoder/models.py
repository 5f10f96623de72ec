"""Domain models for the transcode task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(slots=True)
class VideoCreate:
    """Input payload for registering a source video."""

    original_name: str
    size_bytes: int
    path: str
    video_id: str | None = None


@dataclass(slots=True)
class VideoView:
    """Readable source video view."""

    video_id: str
    original_name: str
    size_bytes: int
    path: str
    created_at: datetime


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and scheduler logic.

    ``video_path`` and ``video_name`` are denormalized from the owning video.
    """

    task_id: str
    video_id: str
    variant: str
    status: TaskStatus
    progress: int | None
    current_bitrate: str | None
    retries: int
    error: str | None
    output_path: str | None
    output_size: int | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime
    updated_at: datetime
    video_path: str | None = None
    video_name: str | None = None


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class VideoDetails:
    """Video with every task requested for it."""

    video: VideoView
    tasks: list[TaskView]


@dataclass(slots=True, frozen=True)
class ProgressUpdate:
    """Incremental progress fields; ``None`` means "leave unchanged"."""

    progress: int | None = None
    current_bitrate: str | None = None

    def is_empty(self) -> bool:
        return self.progress is None and self.current_bitrate is None
