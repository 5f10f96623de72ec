"""Runtime configuration for the transcode worker and CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(slots=True)
class StorageSettings:
    """File storage layout for uploaded sources and encoded outputs."""

    root_dir: Path = Path("storage")
    max_upload_bytes: int = 200 * 1024 * 1024

    @property
    def uploads_dir(self) -> Path:
        return self.root_dir / "uploads"

    @property
    def processed_dir(self) -> Path:
        return self.root_dir / "processed"


@dataclass(slots=True)
class WorkerSettings:
    """Scheduler loop and retry policy settings."""

    concurrency_limit: int = 3
    idle_interval_seconds: float = 2.0
    saturated_interval_seconds: float = 1.0
    max_retries: int = 3
    progress_interval_seconds: float = 1.0


@dataclass(slots=True)
class EngineSettings:
    """External encoder executables, as shell-style command strings."""

    ffmpeg_command: str = "ffmpeg"
    ffprobe_command: str = "ffprobe"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".video_forge.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    storage: StorageSettings = field(default_factory=StorageSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("VIDEO_FORGE_DB_PATH", ".video_forge.db")),
            sqlite_busy_timeout_ms=int(os.getenv("VIDEO_FORGE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("VIDEO_FORGE_LOG_LEVEL", "INFO").strip().upper(),
            storage=StorageSettings(
                root_dir=Path(os.getenv("VIDEO_FORGE_STORAGE_DIR", "storage")),
                max_upload_bytes=int(
                    os.getenv("VIDEO_FORGE_MAX_UPLOAD_BYTES", str(200 * 1024 * 1024)),
                ),
            ),
            worker=WorkerSettings(
                concurrency_limit=int(os.getenv("VIDEO_FORGE_CONCURRENCY_LIMIT", "3")),
                idle_interval_seconds=float(
                    os.getenv("VIDEO_FORGE_IDLE_INTERVAL_SECONDS", "2.0"),
                ),
                saturated_interval_seconds=float(
                    os.getenv("VIDEO_FORGE_SATURATED_INTERVAL_SECONDS", "1.0"),
                ),
                max_retries=int(os.getenv("VIDEO_FORGE_MAX_RETRIES", "3")),
                progress_interval_seconds=float(
                    os.getenv("VIDEO_FORGE_PROGRESS_INTERVAL_SECONDS", "1.0"),
                ),
            ),
            engine=EngineSettings(
                ffmpeg_command=os.getenv("VIDEO_FORGE_FFMPEG_COMMAND", "ffmpeg"),
                ffprobe_command=os.getenv("VIDEO_FORGE_FFPROBE_COMMAND", "ffprobe"),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if worker settings are out of range."""

        if self.worker.concurrency_limit <= 0:
            raise ValueError("VIDEO_FORGE_CONCURRENCY_LIMIT must be a positive integer.")
        if self.worker.idle_interval_seconds < 0:
            raise ValueError("VIDEO_FORGE_IDLE_INTERVAL_SECONDS must be >= 0.")
        if self.worker.saturated_interval_seconds < 0:
            raise ValueError("VIDEO_FORGE_SATURATED_INTERVAL_SECONDS must be >= 0.")
        if self.worker.max_retries < 0:
            raise ValueError("VIDEO_FORGE_MAX_RETRIES must be >= 0.")
        if self.worker.progress_interval_seconds < 0:
            raise ValueError("VIDEO_FORGE_PROGRESS_INTERVAL_SECONDS must be >= 0.")
        if not self.engine.ffmpeg_command.strip():
            raise ValueError("VIDEO_FORGE_FFMPEG_COMMAND must not be empty.")
        if not self.engine.ffprobe_command.strip():
            raise ValueError("VIDEO_FORGE_FFPROBE_COMMAND must not be empty.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid VIDEO_FORGE_LOG_LEVEL: {self.log_level!r}. "
                f"Expected one of {', '.join(sorted(_LOG_LEVELS))}.",
            )

    def configure_logging(self) -> None:
        """Install a root handler for long-running worker processes."""

        logging.basicConfig(
            level=self.log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
