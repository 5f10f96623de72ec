"""Controllers for transcode CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from video_forge.config import Settings
from video_forge.transcoder.engine import FfmpegEngine
from video_forge.transcoder.models import TaskStatus, TaskView
from video_forge.transcoder.recovery import recover_stale_tasks
from video_forge.transcoder.repository import TaskRepository
from video_forge.transcoder.scheduler import TranscodeScheduler
from video_forge.transcoder.services import RegisterVideo, TranscodeService


@dataclass(slots=True)
class VideoAddCommand:
    """CLI input for source video registration."""

    db_path: Path | None
    source_path: Path
    original_name: str | None


@dataclass(slots=True)
class VideoListCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class VideoShowCommand:
    db_path: Path | None
    video_id: str


@dataclass(slots=True)
class TaskEnqueueCommand:
    """CLI input for variant requests."""

    db_path: Path | None
    video_id: str
    variants: tuple[str, ...]


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskMutateCommand:
    """CLI input for inspect/delete operations."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    until_idle: bool
    concurrency_limit: int | None = None


@dataclass(slots=True)
class DbPathCommand:
    db_path: Path | None


class TranscodeCliController:
    """Coordinates video, queue and worker CLI operations."""

    def add_video(self, command: VideoAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            video = TranscodeService(
                repository=repository,
                storage=settings.storage,
            ).register_video(
                RegisterVideo(
                    source_path=command.source_path,
                    original_name=command.original_name,
                ),
            )
        return [
            f"Video registered: video_id={video.video_id} name={video.original_name} "
            f"size={video.size_bytes}",
            f"Stored at: {video.path}",
        ]

    def list_videos(self, command: VideoListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            videos = repository.list_videos(limit=command.limit)

        lines = [f"Videos: {len(videos)}"]
        for details in videos:
            video = details.video
            lines.append(
                f"  {video.video_id} name={video.original_name} size={video.size_bytes} "
                f"tasks={len(details.tasks)} created_at={video.created_at.isoformat()}",
            )
            lines.extend(f"    {_task_line(task)}" for task in details.tasks)
        return lines

    def show_video(self, command: VideoShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_video(video_id=command.video_id)
        if details is None:
            raise RuntimeError(f"Video not found: {command.video_id}")

        video = details.video
        return [
            f"Video: {video.video_id}",
            f"Name: {video.original_name}",
            f"Size: {video.size_bytes}",
            f"Path: {video.path}",
            f"Tasks: {len(details.tasks)}",
            *(f"  {_task_line(task)}" for task in details.tasks),
        ]

    def enqueue(self, command: TaskEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            tasks = TranscodeService(
                repository=repository,
                storage=settings.storage,
            ).request_variants(video_id=command.video_id, variants=command.variants)
        return [
            f"Tasks enqueued: {len(tasks)}",
            *(f"  {task.task_id} variant={task.variant}" for task in tasks),
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)
        return [f"Tasks: {len(tasks)}", *(f"  {_task_line(task)}" for task in tasks)]

    def inspect_task(self, command: TaskMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Video: {task.video_id} ({task.video_name or '-'})",
            f"Variant: {task.variant}",
            f"Status: {task.status.value}",
            f"Progress: {task.progress if task.progress is not None else '-'}",
            f"Bitrate: {task.current_bitrate or '-'}",
            f"Retries: {task.retries}",
            f"Error: {task.error or '-'}",
            f"Output: {task.output_path or '-'} ({task.output_size or 0} bytes)",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def delete_task(self, command: TaskMutateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = TranscodeService(
                repository=repository,
                storage=settings.storage,
            ).delete_task(task_id=command.task_id)
        return [f"Task deleted: {task.task_id}"]

    def clear(self, command: DbPathCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            summary = TranscodeService(repository=repository, storage=settings.storage).clear_all()
        return [f"System cleared: videos={summary.videos} tasks={summary.tasks}"]

    def recover(self, command: DbPathCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            count = recover_stale_tasks(repository, max_retries=settings.worker.max_retries)
        return [f"Recovered stale tasks: {count}"]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.concurrency_limit is not None:
            settings.worker.concurrency_limit = command.concurrency_limit
        settings.validate_for_worker()
        settings.configure_logging()

        with _repository(settings) as repository:
            recovered = recover_stale_tasks(
                repository,
                max_retries=settings.worker.max_retries,
            )
            scheduler = TranscodeScheduler(
                repository=repository,
                engine=FfmpegEngine(
                    ffmpeg_command=settings.engine.ffmpeg_command,
                    ffprobe_command=settings.engine.ffprobe_command,
                ),
                output_dir=settings.storage.processed_dir,
                concurrency_limit=settings.worker.concurrency_limit,
                idle_interval_seconds=settings.worker.idle_interval_seconds,
                saturated_interval_seconds=settings.worker.saturated_interval_seconds,
                max_retries=settings.worker.max_retries,
                progress_interval_seconds=settings.worker.progress_interval_seconds,
            )
            summary = scheduler.run_loop(max_idle_polls=1 if command.until_idle else None)
            scheduler.join()

        return [
            "Worker summary: "
            f"recovered={recovered} dispatched={summary.dispatched} "
            f"completed={summary.completed} retried={summary.retried} "
            f"failed={summary.failed} idle_polls={summary.idle_polls} "
            f"loop_errors={summary.loop_errors}",
        ]


def _task_line(task: TaskView) -> str:
    progress = f"{task.progress}%" if task.progress is not None else "-"
    return (
        f"{task.task_id} variant={task.variant} status={task.status.value} "
        f"progress={progress} retries={task.retries} bitrate={task.current_bitrate or '-'}"
    )


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().upper())


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
