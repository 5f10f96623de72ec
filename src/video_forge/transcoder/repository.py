"""Persistent queue repository for transcode tasks."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, literal_column
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from video_forge.storage.alembic_runner import upgrade_head
from video_forge.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from video_forge.storage.sqlmodel_models import TranscodeTask, TranscodeTaskEvent, Video
from video_forge.transcoder.models import (
    ProgressUpdate,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
    VideoCreate,
    VideoDetails,
    VideoView,
)


class TaskRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    Every method opens its own short session, so one instance can be shared
    by the scheduler loop and all task threads.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- videos ---------------------------------------------------------------

    def create_video(self, payload: VideoCreate) -> VideoView:
        now = utc_now()
        with Session(self.engine) as session:
            row = Video(
                video_id=payload.video_id or str(uuid4()),
                original_name=payload.original_name,
                size_bytes=payload.size_bytes,
                path=payload.path,
                created_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_video_view(row)

    def get_video(self, *, video_id: str) -> VideoDetails | None:
        """Return a video with its tasks, oldest task first."""

        with Session(self.engine) as session:
            video = session.get(Video, video_id)
            if video is None:
                return None
            tasks = session.exec(
                select(TranscodeTask)
                .where(TranscodeTask.video_id == video_id)
                .order_by(col(TranscodeTask.created_at).asc()),
            ).all()
            return VideoDetails(
                video=_to_video_view(video),
                tasks=[_to_task_view(task, video=video) for task in tasks],
            )

    def list_videos(self, *, limit: int = 50) -> list[VideoDetails]:
        """List recent videos with their tasks, newest video first."""

        with Session(self.engine) as session:
            videos = session.exec(
                select(Video).order_by(col(Video.created_at).desc()).limit(limit),
            ).all()
            video_ids = [video.video_id for video in videos]
            tasks = (
                session.exec(
                    select(TranscodeTask)
                    .where(col(TranscodeTask.video_id).in_(video_ids))
                    .order_by(col(TranscodeTask.created_at).asc()),
                ).all()
                if video_ids
                else []
            )
            by_video: dict[str, list[TaskView]] = {video_id: [] for video_id in video_ids}
            videos_by_id = {video.video_id: video for video in videos}
            for task in tasks:
                by_video[task.video_id].append(
                    _to_task_view(task, video=videos_by_id[task.video_id]),
                )
            return [
                VideoDetails(video=_to_video_view(video), tasks=by_video[video.video_id])
                for video in videos
            ]

    # -- queue ------------------------------------------------------------------

    def enqueue_tasks(self, *, video_id: str, variants: Sequence[str]) -> list[TaskView]:
        """Create one queued task per requested variant."""

        with Session(self.engine) as session:
            video = session.get(Video, video_id)
            if video is None:
                raise RuntimeError(f"Video not found: {video_id}")

            rows: list[TranscodeTask] = []
            for variant in variants:
                now = utc_now()
                row = TranscodeTask(
                    task_id=str(uuid4()),
                    video_id=video_id,
                    variant=variant,
                    status=TaskStatus.QUEUED.value,
                    retries=0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                self._add_event(
                    session=session,
                    task_id=row.task_id,
                    event_type="enqueued",
                    status_from=None,
                    status_to=TaskStatus.QUEUED,
                    details={"variant": variant},
                )
                rows.append(row)
            session.commit()
            for row in rows:
                session.refresh(row)
            return [_to_task_view(row, video=video) for row in rows]

    def find_oldest_queued(self) -> TaskView | None:
        """Return the oldest QUEUED task without claiming it."""

        with Session(self.engine) as session:
            row = session.exec(
                select(TranscodeTask)
                .where(TranscodeTask.status == TaskStatus.QUEUED.value)
                .order_by(
                    col(TranscodeTask.created_at).asc(),
                    literal_column("transcode_tasks.rowid").asc(),
                )
                .limit(1),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def claim(self, *, task_id: str) -> bool:
        """Atomically move a QUEUED task to PROCESSING.

        Returns False when another claimer already moved the task.
        """

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TranscodeTask)
                .where(
                    col(TranscodeTask.task_id) == task_id,
                    col(TranscodeTask.status) == TaskStatus.QUEUED.value,
                )
                .values(
                    status=TaskStatus.PROCESSING.value,
                    started_at=to_db_datetime(now),
                    finished_at=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="claimed",
                status_from=TaskStatus.QUEUED,
                status_to=TaskStatus.PROCESSING,
                details={},
            )
            session.commit()
            return True

    def get_task(self, *, task_id: str) -> TaskView | None:
        """Return a task with its video path and original name."""

        with Session(self.engine) as session:
            row = session.exec(
                select(TranscodeTask, Video)
                .join(Video, col(Video.video_id) == col(TranscodeTask.video_id))
                .where(TranscodeTask.task_id == task_id),
            ).one_or_none()
            if row is None:
                return None
            task, video = row
            return _to_task_view(task, video=video)

    def update_progress(self, *, task_id: str, update: ProgressUpdate) -> bool:
        """Persist the present progress fields of a PROCESSING task."""

        if update.is_empty():
            return False
        values: dict[str, object] = {"updated_at": to_db_datetime(utc_now())}
        if update.progress is not None:
            values["progress"] = update.progress
        if update.current_bitrate is not None:
            values["current_bitrate"] = update.current_bitrate

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TranscodeTask)
                .where(
                    col(TranscodeTask.task_id) == task_id,
                    col(TranscodeTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_task(self, *, task_id: str, output_path: str, output_size: int) -> bool:
        """Mark a PROCESSING task as completed."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TranscodeTask)
                .where(
                    col(TranscodeTask.task_id) == task_id,
                    col(TranscodeTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    progress=100,
                    finished_at=to_db_datetime(now),
                    output_path=output_path,
                    output_size=output_size,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="completed",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.COMPLETED,
                details={"output_path": output_path, "output_size": output_size},
            )
            session.commit()
            return True

    def requeue_for_retry(self, *, task_id: str, error: str) -> bool:
        """Requeue a PROCESSING task for automatic retry, incrementing retries."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TranscodeTask)
                .where(
                    col(TranscodeTask.task_id) == task_id,
                    col(TranscodeTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.QUEUED.value,
                    retries=col(TranscodeTask.retries) + 1,
                    progress=0,
                    current_bitrate=None,
                    error=error,
                    started_at=None,
                    finished_at=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="retry_scheduled",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.QUEUED,
                details={"error": error},
            )
            session.commit()
            return True

    def fail_task(self, *, task_id: str, error: str) -> bool:
        """Mark a PROCESSING task as terminally failed."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TranscodeTask)
                .where(
                    col(TranscodeTask.task_id) == task_id,
                    col(TranscodeTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.FAILED.value,
                    error=error,
                    finished_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="failed",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.FAILED,
                details={"error": error},
            )
            session.commit()
            return True

    def requeue_all_processing(
        self,
        *,
        error: str,
        failed_error: str,
        max_retries: int = 3,
    ) -> int:
        """Repair every PROCESSING task left behind by a dead worker.

        A crash consumes a retry: rows under ``max_retries`` go back to QUEUED
        with ``retries + 1``, rows already at the cap end FAILED. Each row is
        moved by its own conditional update, so a task finished by a
        concurrent writer is skipped rather than clobbered.
        """

        recovered = 0
        with Session(self.engine) as session:
            task_ids = session.exec(
                select(TranscodeTask.task_id).where(
                    TranscodeTask.status == TaskStatus.PROCESSING.value,
                ),
            ).all()

        for task_id in task_ids:
            now = utc_now()
            with Session(self.engine) as session:
                still_processing = (
                    col(TranscodeTask.task_id) == task_id,
                    col(TranscodeTask.status) == TaskStatus.PROCESSING.value,
                )
                status_to = TaskStatus.QUEUED
                event_error = error
                result = session.exec(
                    sa_update(TranscodeTask)
                    .where(*still_processing, col(TranscodeTask.retries) < max_retries)
                    .values(
                        status=TaskStatus.QUEUED.value,
                        retries=col(TranscodeTask.retries) + 1,
                        progress=0,
                        current_bitrate=None,
                        error=error,
                        started_at=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    status_to = TaskStatus.FAILED
                    event_error = failed_error
                    result = session.exec(
                        sa_update(TranscodeTask)
                        .where(*still_processing, col(TranscodeTask.retries) >= max_retries)
                        .values(
                            status=TaskStatus.FAILED.value,
                            current_bitrate=None,
                            error=failed_error,
                            finished_at=to_db_datetime(now),
                            updated_at=to_db_datetime(now),
                        ),
                    )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="recovered",
                    status_from=TaskStatus.PROCESSING,
                    status_to=status_to,
                    details={"error": event_error},
                )
                session.commit()
                recovered += 1
        return recovered

    # -- inspection and removal -------------------------------------------------

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = (
                select(TranscodeTask, Video)
                .join(Video, col(Video.video_id) == col(TranscodeTask.video_id))
                .order_by(col(TranscodeTask.created_at).desc())
                .limit(limit)
            )
            if status is not None:
                statement = statement.where(TranscodeTask.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(task, video=video) for task, video in rows]

    def count_by_status(self, *, status: TaskStatus) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count()).select_from(TranscodeTask).where(
                    TranscodeTask.status == status.value,
                ),
            ).one()

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        task = self.get_task(task_id=task_id)
        if task is None:
            return None

        with Session(self.engine) as session:
            event_rows = session.exec(
                select(TranscodeTaskEvent)
                .where(TranscodeTaskEvent.task_id == task_id)
                .order_by(col(TranscodeTaskEvent.created_at).asc(), col(TranscodeTaskEvent.id)),
            ).all()

        events: list[TaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=(
                        TaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=task, events=events)

    def delete_task(self, *, task_id: str) -> TaskView | None:
        """Delete a task row and return its last state, or None if missing."""

        task = self.get_task(task_id=task_id)
        if task is None:
            return None
        with Session(self.engine) as session:
            session.exec(
                sa_delete(TranscodeTaskEvent).where(
                    col(TranscodeTaskEvent.task_id) == task_id,
                ),
            )
            session.exec(sa_delete(TranscodeTask).where(col(TranscodeTask.task_id) == task_id))
            session.commit()
        return task

    def clear_all(self) -> tuple[int, int]:
        """Delete every video and task. Returns ``(videos, tasks)`` removed."""

        with Session(self.engine) as session:
            session.exec(sa_delete(TranscodeTaskEvent))
            tasks = session.exec(sa_delete(TranscodeTask)).rowcount
            videos = session.exec(sa_delete(Video)).rowcount
            session.commit()
        return videos, tasks

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TranscodeTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _to_video_view(row: Video) -> VideoView:
    return VideoView(
        video_id=row.video_id,
        original_name=row.original_name,
        size_bytes=row.size_bytes,
        path=row.path,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_task_view(row: TranscodeTask, *, video: Video | None = None) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        video_id=row.video_id,
        variant=row.variant,
        status=TaskStatus(row.status),
        progress=row.progress,
        current_bitrate=row.current_bitrate,
        retries=row.retries,
        error=row.error,
        output_path=row.output_path,
        output_size=row.output_size,
        started_at=_optional_aware(row.started_at),
        finished_at=_optional_aware(row.finished_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        video_path=video.path if video is not None else None,
        video_name=video.original_name if video is not None else None,
    )
