"""Variant key parsing and deterministic encode parameter mapping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ContainerFormat(str, Enum):
    MP4 = "MP4"
    WEBM = "WebM"
    MOV = "MOV"


class Resolution(str, Enum):
    P480 = "480p"
    P720 = "720p"
    P1080 = "1080p"


class SpeedHint(str, Enum):
    """Encoder speed trade-off, translated to codec options by the engine."""

    REALTIME = "realtime"
    FAST = "fast"


@dataclass(slots=True, frozen=True)
class EncodeParameters:
    width: int
    height: int
    bitrate_kbps: int
    video_codec: str
    audio_codec: str
    container_ext: str
    speed_hint: SpeedHint

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(slots=True, frozen=True)
class _ResolutionProfile:
    width: int
    height: int
    bitrate_kbps: int


@dataclass(slots=True, frozen=True)
class _FormatProfile:
    container_ext: str
    video_codec: str
    audio_codec: str
    speed_hint: SpeedHint


_RESOLUTION_PROFILES = {
    Resolution.P1080: _ResolutionProfile(width=1920, height=1080, bitrate_kbps=5000),
    Resolution.P720: _ResolutionProfile(width=1280, height=720, bitrate_kbps=2500),
    Resolution.P480: _ResolutionProfile(width=854, height=480, bitrate_kbps=1000),
}

_FORMAT_PROFILES = {
    ContainerFormat.WEBM: _FormatProfile(
        container_ext="webm",
        video_codec="libvpx-vp9",
        audio_codec="libopus",
        speed_hint=SpeedHint.REALTIME,
    ),
    ContainerFormat.MOV: _FormatProfile(
        container_ext="mov",
        video_codec="libx264",
        audio_codec="aac",
        speed_hint=SpeedHint.FAST,
    ),
    ContainerFormat.MP4: _FormatProfile(
        container_ext="mp4",
        video_codec="libx264",
        audio_codec="aac",
        speed_hint=SpeedHint.FAST,
    ),
}

SUPPORTED_VARIANTS: tuple[str, ...] = tuple(
    f"{fmt.value}-{res.value}" for fmt in ContainerFormat for res in Resolution
)


def parse_variant(variant: str) -> tuple[ContainerFormat, Resolution]:
    """Split ``"<Format>-<Resolution>"``; unknown tokens fall back to MP4 / 480p."""

    format_key, _, resolution_key = variant.partition("-")
    try:
        container_format = ContainerFormat(format_key)
    except ValueError:
        container_format = ContainerFormat.MP4
    try:
        resolution = Resolution(resolution_key)
    except ValueError:
        resolution = Resolution.P480
    return container_format, resolution


def derive_encode_parameters(variant: str) -> EncodeParameters:
    """Map a variant key to encoder parameters. Pure, never raises."""

    container_format, resolution = parse_variant(variant)
    size = _RESOLUTION_PROFILES[resolution]
    codec = _FORMAT_PROFILES[container_format]
    return EncodeParameters(
        width=size.width,
        height=size.height,
        bitrate_kbps=size.bitrate_kbps,
        video_codec=codec.video_codec,
        audio_codec=codec.audio_codec,
        container_ext=codec.container_ext,
        speed_hint=codec.speed_hint,
    )
