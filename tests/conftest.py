"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from video_forge.transcoder.models import VideoCreate, VideoView
from video_forge.transcoder.repository import TaskRepository

ECHO_ENCODER_COMMAND = f"{sys.executable} -m video_forge.transcoder.engine.echo_encoder"


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(tmp_path / "queue.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def source_video(tmp_path: Path) -> Path:
    path = tmp_path / "source" / "clip.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 4096)
    return path


@pytest.fixture()
def video(repository: TaskRepository, source_video: Path) -> VideoView:
    return repository.create_video(
        VideoCreate(
            original_name=source_video.name,
            size_bytes=source_video.stat().st_size,
            path=str(source_video),
        ),
    )


@pytest.fixture()
def echo_encoder(monkeypatch) -> str:
    """Point ffmpeg and ffprobe settings at the echo encoder."""

    monkeypatch.setenv("VIDEO_FORGE_FFMPEG_COMMAND", ECHO_ENCODER_COMMAND)
    monkeypatch.setenv("VIDEO_FORGE_FFPROBE_COMMAND", ECHO_ENCODER_COMMAND)
    return ECHO_ENCODER_COMMAND
