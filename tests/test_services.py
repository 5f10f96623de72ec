from __future__ import annotations

from pathlib import Path

import allure
import pytest

from video_forge.config import StorageSettings
from video_forge.transcoder.models import VideoView
from video_forge.transcoder.repository import TaskRepository
from video_forge.transcoder.services import RegisterVideo, TranscodeService
from video_forge.transcoder.variants import SUPPORTED_VARIANTS

pytestmark = [
    allure.epic("Transcode Queue"),
    allure.feature("Uploads & Requests"),
]


def _service(repository: TaskRepository, tmp_path: Path, **overrides) -> TranscodeService:
    storage = StorageSettings(root_dir=tmp_path / "storage", **overrides)
    return TranscodeService(repository=repository, storage=storage)


def test_register_video_copies_source_into_uploads(
    repository: TaskRepository,
    source_video: Path,
    tmp_path: Path,
) -> None:
    service = _service(repository, tmp_path)

    video = service.register_video(RegisterVideo(source_path=source_video))

    stored = Path(video.path)
    assert stored.parent == (tmp_path / "storage" / "uploads").resolve()
    assert stored.suffix == ".mp4"
    assert stored.read_bytes() == source_video.read_bytes()
    assert video.original_name == "clip.mp4"
    assert video.size_bytes == source_video.stat().st_size


def test_register_video_enforces_upload_limit(
    repository: TaskRepository,
    source_video: Path,
    tmp_path: Path,
) -> None:
    service = _service(repository, tmp_path, max_upload_bytes=16)

    with pytest.raises(ValueError, match="upload limit"):
        service.register_video(RegisterVideo(source_path=source_video))
    assert repository.list_videos() == []


def test_register_video_requires_existing_file(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    with pytest.raises(ValueError, match="Source video not found"):
        _service(repository, tmp_path).register_video(
            RegisterVideo(source_path=tmp_path / "missing.mp4"),
        )


def test_request_variants_defaults_to_all(
    repository: TaskRepository,
    video: VideoView,
    tmp_path: Path,
) -> None:
    tasks = _service(repository, tmp_path).request_variants(video_id=video.video_id)

    assert sorted(task.variant for task in tasks) == sorted(SUPPORTED_VARIANTS)


def test_request_variants_rejects_unknown_variant(
    repository: TaskRepository,
    video: VideoView,
    tmp_path: Path,
) -> None:
    with pytest.raises(ValueError, match="Unsupported variant"):
        _service(repository, tmp_path).request_variants(
            video_id=video.video_id,
            variants=("MP4-480p", "AVI-4k"),
        )
    assert repository.list_tasks() == []


def test_delete_task_removes_output_file(
    repository: TaskRepository,
    video: VideoView,
    tmp_path: Path,
) -> None:
    service = _service(repository, tmp_path)
    task = service.request_variants(video_id=video.video_id, variants=("MP4-480p",))[0]
    output = tmp_path / "storage" / "processed" / f"{task.task_id}.mp4"
    output.parent.mkdir(parents=True)
    output.write_bytes(b"done")
    repository.claim(task_id=task.task_id)
    repository.complete_task(task_id=task.task_id, output_path=str(output), output_size=4)

    service.delete_task(task_id=task.task_id)

    assert not output.exists()
    with pytest.raises(RuntimeError, match="Task not found"):
        service.delete_task(task_id=task.task_id)


def test_clear_all_resets_storage(
    repository: TaskRepository,
    source_video: Path,
    tmp_path: Path,
) -> None:
    service = _service(repository, tmp_path)
    video = service.register_video(RegisterVideo(source_path=source_video))
    service.request_variants(video_id=video.video_id, variants=("MOV-480p", "MOV-720p"))

    summary = service.clear_all()

    assert (summary.videos, summary.tasks) == (1, 2)
    assert list((tmp_path / "storage" / "uploads").iterdir()) == []
    assert (tmp_path / "storage" / "processed").is_dir()
