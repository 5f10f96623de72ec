"""Engine adapter contract for external encode/probe processes."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from video_forge.transcoder.variants import EncodeParameters


class EncodeError(RuntimeError):
    """Terminal failure of one encode invocation."""


@dataclass(slots=True)
class EncodeRequest:
    """Inputs required to execute one encode."""

    source_path: Path
    output_path: Path
    parameters: EncodeParameters


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """Normalized progress sample; every field is optional."""

    percent: float | None = None
    current_kbps: float | None = None
    timemark: str | None = None


class TranscodeEngine(Protocol):
    """Protocol implemented by encoder adapters."""

    def probe_duration(self, source_path: Path) -> float | None:
        """Return media duration in seconds, or None when unavailable."""

    def encode(self, request: EncodeRequest) -> Iterator[ProgressEvent]:
        """Yield progress until the encode succeeds; raise EncodeError on failure."""


def timemark_to_seconds(timemark: str) -> float | None:
    """Convert ``HH:MM:SS(.ffffff)`` to seconds."""

    parts = timemark.strip().split(":")
    if len(parts) != 3:  # noqa: PLR2004
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = float(parts[2])
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds
