"""Transcoding engine adapters."""

from video_forge.transcoder.engine.base import (
    EncodeError,
    EncodeRequest,
    ProgressEvent,
    TranscodeEngine,
)
from video_forge.transcoder.engine.ffmpeg_engine import FfmpegEngine

__all__ = [
    "EncodeError",
    "EncodeRequest",
    "FfmpegEngine",
    "ProgressEvent",
    "TranscodeEngine",
]
