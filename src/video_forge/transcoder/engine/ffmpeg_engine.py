"""Subprocess-based engine adapter for ffmpeg/ffprobe."""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from video_forge.transcoder.engine.base import (
    EncodeError,
    EncodeRequest,
    ProgressEvent,
    timemark_to_seconds,
)
from video_forge.transcoder.variants import EncodeParameters, SpeedHint

logger = logging.getLogger(__name__)

_SPEED_OPTIONS = {
    SpeedHint.REALTIME: ("-deadline", "realtime", "-cpu-used", "4"),
    SpeedHint.FAST: ("-preset", "fast"),
}
_STDERR_TAIL_CHARS = 800


class FfmpegEngine:
    """Run ffmpeg with machine-readable ``-progress`` output on stdout."""

    def __init__(
        self,
        *,
        ffmpeg_command: str = "ffmpeg",
        ffprobe_command: str = "ffprobe",
        probe_timeout_seconds: float = 30.0,
    ) -> None:
        self.ffmpeg_command = ffmpeg_command
        self.ffprobe_command = ffprobe_command
        self.probe_timeout_seconds = probe_timeout_seconds

    def probe_duration(self, source_path: Path) -> float | None:
        argv = [
            *shlex.split(self.ffprobe_command),
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            str(source_path),
        ]
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as error:
            logger.warning("ffprobe failed for %s: %s", source_path, error)
            return None
        if completed.returncode != 0:
            logger.warning(
                "ffprobe exited with code %s for %s: %s",
                completed.returncode,
                source_path,
                completed.stderr.strip()[-_STDERR_TAIL_CHARS:],
            )
            return None
        try:
            payload = json.loads(completed.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("ffprobe returned invalid JSON for %s", source_path)
            return None
        return parse_probe_duration(payload)

    def encode(self, request: EncodeRequest) -> Iterator[ProgressEvent]:
        argv = build_encode_args(
            ffmpeg_command=self.ffmpeg_command,
            source_path=request.source_path,
            output_path=request.output_path,
            parameters=request.parameters,
        )
        request.output_path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryFile(mode="w+", encoding="utf-8") as stderr_handle:
            try:
                process = subprocess.Popen(  # noqa: S603
                    argv,
                    stdout=subprocess.PIPE,
                    stderr=stderr_handle,
                    text=True,
                )
            except FileNotFoundError as error:
                raise EncodeError(f"Encoder command not found: {argv[0]}") from error
            except OSError as error:
                raise EncodeError(f"Encoder failed to start: {error}") from error

            try:
                if process.stdout is not None:
                    yield from parse_progress_stream(process.stdout)
                returncode = process.wait()
            finally:
                if process.poll() is None:
                    _terminate_process(process)
                if process.stdout is not None:
                    process.stdout.close()

            if returncode != 0:
                stderr_handle.seek(0)
                tail = stderr_handle.read().strip()[-_STDERR_TAIL_CHARS:]
                raise EncodeError(f"ffmpeg exited with code {returncode}: {tail or 'no output'}")


def build_encode_args(
    *,
    ffmpeg_command: str,
    source_path: Path,
    output_path: Path,
    parameters: EncodeParameters,
) -> list[str]:
    head = shlex.split(ffmpeg_command)
    if not head:
        raise EncodeError("Encoder command is empty.")
    return [
        *head,
        "-hide_banner",
        "-nostats",
        "-y",
        "-i",
        str(source_path),
        "-vf",
        f"scale={parameters.width}:{parameters.height}",
        "-b:v",
        f"{parameters.bitrate_kbps}k",
        "-c:v",
        parameters.video_codec,
        "-c:a",
        parameters.audio_codec,
        *_SPEED_OPTIONS[parameters.speed_hint],
        "-progress",
        "pipe:1",
        str(output_path),
    ]


def parse_progress_stream(lines: Iterable[str]) -> Iterator[ProgressEvent]:
    """Fold ffmpeg ``key=value`` progress blocks into events.

    Each block ends with a ``progress=continue`` or ``progress=end`` line.
    """

    block: dict[str, str] = {}
    for raw_line in lines:
        line = raw_line.strip()
        if not line or "=" not in line:
            continue
        key, value = line.split("=", 1)
        block[key.strip()] = value.strip()
        if key.strip() != "progress":
            continue
        yield ProgressEvent(
            percent=None,
            current_kbps=_parse_kbps(block.get("bitrate")),
            timemark=_parse_timemark(block),
        )
        block = {}


def parse_probe_duration(payload: object) -> float | None:
    if not isinstance(payload, dict):
        return None
    fmt = payload.get("format")
    if not isinstance(fmt, dict):
        return None
    try:
        duration = float(fmt.get("duration"))
    except (TypeError, ValueError):
        return None
    return duration if duration > 0 else None


def _parse_timemark(block: dict[str, str]) -> str | None:
    out_time = block.get("out_time")
    if out_time and not out_time.startswith("-") and timemark_to_seconds(out_time) is not None:
        return out_time
    out_time_us = block.get("out_time_us") or block.get("out_time_ms")
    if out_time_us is None:
        return None
    try:
        total = int(out_time_us) / 1_000_000
    except ValueError:
        return None
    if total < 0:
        return None
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{int(hours):02d}:{int(minutes):02d}:{seconds:09.6f}"


def _parse_kbps(raw: str | None) -> float | None:
    if raw is None:
        return None
    value = raw.removesuffix("kbits/s").strip()
    try:
        kbps = float(value)
    except ValueError:
        return None
    return kbps if kbps > 0 else None


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
