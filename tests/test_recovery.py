from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import allure

from video_forge.transcoder.engine.base import EncodeError, EncodeRequest, ProgressEvent
from video_forge.transcoder.models import ProgressUpdate, TaskStatus, VideoView
from video_forge.transcoder.recovery import RECOVERED_ERROR, recover_stale_tasks
from video_forge.transcoder.repository import TaskRepository
from video_forge.transcoder.scheduler import FAILED_ERROR_PREFIX, TranscodeScheduler

pytestmark = [
    allure.epic("Transcode Worker"),
    allure.feature("Crash Recovery"),
]


def test_processing_task_is_requeued_with_consumed_retry(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    stale, untouched = repository.enqueue_tasks(
        video_id=video.video_id,
        variants=["MP4-480p", "MP4-720p"],
    )
    repository.claim(task_id=stale.task_id)
    repository.update_progress(task_id=stale.task_id, update=ProgressUpdate(progress=64))

    assert recover_stale_tasks(repository) == 1

    recovered = repository.get_task(task_id=stale.task_id)
    assert recovered is not None
    assert recovered.status is TaskStatus.QUEUED
    assert recovered.retries == 1
    assert recovered.progress == 0
    assert recovered.error == RECOVERED_ERROR

    other = repository.get_task(task_id=untouched.task_id)
    assert other is not None
    assert other.retries == 0
    assert other.error is None


def test_second_recovery_affects_nothing(repository: TaskRepository, video: VideoView) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["MOV-480p"])[0]
    repository.claim(task_id=task.task_id)

    assert recover_stale_tasks(repository) == 1
    assert recover_stale_tasks(repository) == 0


def test_terminal_tasks_are_left_alone(repository: TaskRepository, video: VideoView) -> None:
    done, failed = repository.enqueue_tasks(
        video_id=video.video_id,
        variants=["MP4-480p", "WebM-480p"],
    )
    repository.claim(task_id=done.task_id)
    repository.claim(task_id=failed.task_id)
    repository.complete_task(task_id=done.task_id, output_path="out.mp4", output_size=10)
    repository.fail_task(task_id=failed.task_id, error="[PROCESSING_FAILED] boom")

    assert recover_stale_tasks(repository) == 0
    assert repository.count_by_status(status=TaskStatus.QUEUED) == 0


def test_recovery_errors_are_reported_as_zero(repository: TaskRepository, monkeypatch) -> None:
    def _broken(**_: object) -> int:
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repository, "requeue_all_processing", _broken)

    assert recover_stale_tasks(repository) == 0


class _AlwaysFailingEngine:
    def __init__(self) -> None:
        self.attempts = 0

    def probe_duration(self, source_path: Path) -> float | None:
        return None

    def encode(self, request: EncodeRequest) -> Iterator[ProgressEvent]:
        self.attempts += 1
        yield ProgressEvent(percent=10.0)
        raise EncodeError("Conversion failed")


def test_task_at_retry_cap_is_failed_instead_of_requeued(
    repository: TaskRepository,
    video: VideoView,
) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["MP4-480p"])[0]
    for _ in range(3):
        repository.claim(task_id=task.task_id)
        repository.requeue_for_retry(task_id=task.task_id, error="Retrying... Last error: x")
    repository.claim(task_id=task.task_id)

    assert recover_stale_tasks(repository, max_retries=3) == 1

    failed = repository.get_task(task_id=task.task_id)
    assert failed is not None
    assert failed.status is TaskStatus.FAILED
    assert failed.retries == 3
    assert failed.finished_at is not None
    assert failed.error == f"{FAILED_ERROR_PREFIX} {RECOVERED_ERROR}"
    details = repository.get_task_details(task_id=task.task_id)
    assert details is not None
    assert details.events[-1].event_type == "recovered"
    assert details.events[-1].status_to is TaskStatus.FAILED
    assert recover_stale_tasks(repository, max_retries=3) == 0


def test_crash_then_failures_ends_failed_at_retry_cap(
    repository: TaskRepository,
    video: VideoView,
    tmp_path: Path,
) -> None:
    task = repository.enqueue_tasks(video_id=video.video_id, variants=["WebM-480p"])[0]
    repository.claim(task_id=task.task_id)
    assert recover_stale_tasks(repository) == 1

    engine = _AlwaysFailingEngine()
    scheduler = TranscodeScheduler(
        repository=repository,
        engine=engine,
        output_dir=tmp_path / "processed",
        concurrency_limit=1,
        idle_interval_seconds=0.01,
        saturated_interval_seconds=0.01,
    )
    scheduler.run_loop(max_idle_polls=1)
    assert scheduler.join(timeout=10)

    failed = repository.get_task(task_id=task.task_id)
    assert failed is not None
    assert failed.status is TaskStatus.FAILED
    assert failed.retries == 3
    assert engine.attempts == 3
