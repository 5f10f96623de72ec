"""Use-case services around the transcode queue."""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from random import randint

from video_forge.config import StorageSettings
from video_forge.transcoder.models import TaskView, VideoCreate, VideoView
from video_forge.transcoder.repository import TaskRepository
from video_forge.transcoder.variants import SUPPORTED_VARIANTS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegisterVideo:
    """High-level command to store a source video."""

    source_path: Path
    original_name: str | None = None


@dataclass(slots=True)
class ClearSummary:
    videos: int
    tasks: int


class TranscodeService:
    """Coordinates file storage layout and queue inserts."""

    def __init__(self, *, repository: TaskRepository, storage: StorageSettings) -> None:
        self.repository = repository
        self.storage = storage

    def register_video(self, command: RegisterVideo) -> VideoView:
        """Copy a source file into the uploads directory and record it."""

        source = command.source_path
        if not source.is_file():
            raise ValueError(f"Source video not found: {source}")
        size = source.stat().st_size
        if size > self.storage.max_upload_bytes:
            raise ValueError(
                f"Source video is {size} bytes, above the "
                f"{self.storage.max_upload_bytes} byte upload limit.",
            )

        self.storage.uploads_dir.mkdir(parents=True, exist_ok=True)
        stored = self.storage.uploads_dir / (
            f"{int(time.time() * 1000)}-{randint(0, 10**9)}{source.suffix}"  # noqa: S311
        )
        shutil.copyfile(source, stored)
        return self.repository.create_video(
            VideoCreate(
                original_name=command.original_name or source.name,
                size_bytes=size,
                path=str(stored.resolve()),
            ),
        )

    def request_variants(
        self,
        *,
        video_id: str,
        variants: tuple[str, ...] = (),
    ) -> list[TaskView]:
        """Queue one task per variant; all supported variants when none given."""

        requested = variants or SUPPORTED_VARIANTS
        unknown = [variant for variant in requested if variant not in SUPPORTED_VARIANTS]
        if unknown:
            raise ValueError(
                f"Unsupported variant(s): {', '.join(unknown)}. "
                f"Expected one of: {', '.join(SUPPORTED_VARIANTS)}.",
            )
        return self.repository.enqueue_tasks(video_id=video_id, variants=requested)

    def delete_task(self, *, task_id: str) -> TaskView:
        """Delete a task and its encoded output file."""

        task = self.repository.delete_task(task_id=task_id)
        if task is None:
            raise RuntimeError(f"Task not found: {task_id}")
        if task.output_path:
            output = Path(task.output_path)
            try:
                output.unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to delete output file %s", output)
        return task

    def clear_all(self) -> ClearSummary:
        """Remove every row and every stored upload and output file."""

        videos, tasks = self.repository.clear_all()
        for directory in (self.storage.processed_dir, self.storage.uploads_dir):
            if directory.exists():
                shutil.rmtree(directory)
            directory.mkdir(parents=True, exist_ok=True)
        return ClearSummary(videos=videos, tasks=tasks)
