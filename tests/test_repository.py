from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from video_forge.storage.alembic_runner import current_revision
from video_forge.transcoder.models import ProgressUpdate, TaskStatus, VideoView
from video_forge.transcoder.repository import TaskRepository

pytestmark = [
    allure.epic("Transcode Queue"),
    allure.feature("Persistence & Claiming"),
]


def test_alembic_schema_is_initialized_to_head(repository: TaskRepository) -> None:
    with repository.engine.connect() as connection:
        tables = connection.execute(
            text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name IN ('videos', 'transcode_tasks', 'transcode_task_events') "
                "ORDER BY name",
            ),
        ).scalars().all()

    assert current_revision(repository.db_path) == "20261019_0001"
    assert tables == ["transcode_task_events", "transcode_tasks", "videos"]


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.init_schema()
    repository.close()


def test_enqueue_creates_queued_tasks_with_zero_retries(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    tasks = repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-720p", "WebM-480p"])

    assert [task.variant for task in tasks] == ["MP4-720p", "WebM-480p"]
    for task in tasks:
        assert task.status is TaskStatus.QUEUED
        assert task.retries == 0
        assert task.progress is None
        assert task.started_at is None


def test_enqueue_for_missing_video_raises(repository: TaskRepository) -> None:
    with pytest.raises(RuntimeError, match="Video not found"):
        repository.enqueue_tasks(video_id="missing", variants=["MP4-480p"])


def test_find_oldest_queued_is_fifo(repository: TaskRepository, video: VideoView) -> None:
    first = repository.enqueue_tasks(video_id=video.video_id, variants=["MOV-1080p"])[0]
    second = repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-480p"])[0]

    oldest = repository.find_oldest_queued()
    assert oldest is not None
    assert oldest.task_id == first.task_id

    assert repository.claim(task_id=first.task_id)
    oldest = repository.find_oldest_queued()
    assert oldest is not None
    assert oldest.task_id == second.task_id


def test_claim_is_exclusive(repository: TaskRepository, video: VideoView) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-480p"])[0]

    assert repository.claim(task_id=task.task_id) is True
    assert repository.claim(task_id=task.task_id) is False

    claimed = repository.get_task(task_id=task.task_id)
    assert claimed is not None
    assert claimed.status is TaskStatus.PROCESSING
    assert claimed.started_at is not None
    assert claimed.video_path == video.path
    assert claimed.video_name == video.original_name


def test_update_progress_applies_only_present_fields(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-480p"])[0]
    assert not repository.update_progress(task_id=task.task_id, update=ProgressUpdate(progress=5))

    repository.claim(task_id=task.task_id)
    assert repository.update_progress(
        task_id=task.task_id,
        update=ProgressUpdate(progress=40, current_bitrate="1200 kbps"),
    )
    assert repository.update_progress(task_id=task.task_id, update=ProgressUpdate(progress=55))

    current = repository.get_task(task_id=task.task_id)
    assert current is not None
    assert current.progress == 55
    assert current.current_bitrate == "1200 kbps"


def test_retry_increments_and_resets_progress(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-480p"])[0]
    repository.claim(task_id=task.task_id)
    repository.update_progress(
        task_id=task.task_id,
        update=ProgressUpdate(progress=70, current_bitrate="900 kbps"),
    )

    assert repository.requeue_for_retry(task_id=task.task_id, error="Retrying... Last error: boom")

    current = repository.get_task(task_id=task.task_id)
    assert current is not None
    assert current.status is TaskStatus.QUEUED
    assert current.retries == 1
    assert current.progress == 0
    assert current.current_bitrate is None
    assert current.error == "Retrying... Last error: boom"
    assert repository.requeue_for_retry(task_id=task.task_id, error="not processing") is False


def test_complete_and_fail_require_processing(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    done, broken = repository.enqueue_tasks(
        video_id=video.video_id,
        variants=["MP4-480p", "MP4-720p"],
    )
    assert not repository.complete_task(task_id=done.task_id, output_path="x.mp4", output_size=1)

    repository.claim(task_id=done.task_id)
    repository.claim(task_id=broken.task_id)
    assert repository.complete_task(task_id=done.task_id, output_path="out.mp4", output_size=2048)
    assert repository.fail_task(task_id=broken.task_id, error="[PROCESSING_FAILED] boom")
    assert repository.fail_task(task_id=done.task_id, error="late") is False

    completed = repository.get_task(task_id=done.task_id)
    failed = repository.get_task(task_id=broken.task_id)
    assert completed is not None and failed is not None
    assert completed.status is TaskStatus.COMPLETED
    assert completed.progress == 100
    assert completed.output_size == 2048
    assert completed.finished_at is not None
    assert failed.status is TaskStatus.FAILED
    assert failed.error == "[PROCESSING_FAILED] boom"
    assert repository.count_by_status(status=TaskStatus.COMPLETED) == 1


def test_task_details_include_event_history(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["WebM-720p"])[0]
    repository.claim(task_id=task.task_id)
    repository.requeue_for_retry(task_id=task.task_id, error="Retrying... Last error: x")

    details = repository.get_task_details(task_id=task.task_id)

    assert details is not None
    assert [event.event_type for event in details.events] == [
        "enqueued",
        "claimed",
        "retry_scheduled",
    ]
    assert details.events[0].details == {"variant": "WebM-720p"}
    assert details.events[-1].status_to is TaskStatus.QUEUED
    assert repository.get_task_details(task_id="missing") is None


def test_list_videos_and_tasks(repository: TaskRepository, video: VideoView) -> None:
    repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-480p", "MOV-720p"])
    repository.claim(task_id=repository.find_oldest_queued().task_id)  # type: ignore[union-attr]

    videos = repository.list_videos()
    assert len(videos) == 1
    assert videos[0].video.video_id == video.video_id
    assert {task.variant for task in videos[0].tasks} == {"MP4-480p", "MOV-720p"}

    processing = repository.list_tasks(status=TaskStatus.PROCESSING)
    assert len(processing) == 1
    assert processing[0].video_name == video.original_name
    assert len(repository.list_tasks()) == 2


def test_delete_task_and_clear_all(repository: TaskRepository, video: VideoView) -> None:
    first, _ = repository.enqueue_tasks(
        video_id=video.video_id,
        variants=["MP4-480p", "MOV-720p"],
    )

    deleted = repository.delete_task(task_id=first.task_id)
    assert deleted is not None
    assert deleted.task_id == first.task_id
    assert repository.get_task(task_id=first.task_id) is None
    assert repository.delete_task(task_id=first.task_id) is None

    assert repository.clear_all() == (1, 1)
    assert repository.list_videos() == []
    assert repository.list_tasks() == []


def test_status_is_stored_as_uppercase_literal(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    queued, processing = repository.enqueue_tasks(
        video_id=video.video_id,
        variants=["MP4-480p", "MP4-720p"],
    )
    repository.claim(task_id=processing.task_id)

    with repository.engine.connect() as connection:
        rows = dict(
            connection.execute(text("SELECT task_id, status FROM transcode_tasks")).all(),
        )

    assert rows == {queued.task_id: "QUEUED", processing.task_id: "PROCESSING"}


def test_fifo_ties_resolve_in_insertion_order(
    repository: TaskRepository,
    video: VideoView,
    monkeypatch,
) -> None:
    frozen = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    monkeypatch.setattr("video_forge.transcoder.repository.utc_now", lambda: frozen)
    variants = ["MOV-1080p", "MP4-480p", "WebM-720p", "MOV-480p", "MP4-1080p"]
    enqueued = repository.enqueue_tasks(video_id=video.video_id, variants=variants)

    claimed: list[str] = []
    while (candidate := repository.find_oldest_queued()) is not None:
        assert repository.claim(task_id=candidate.task_id)
        claimed.append(candidate.task_id)

    assert claimed == [task.task_id for task in enqueued]
