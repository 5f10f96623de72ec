"""Progress percent derivation and write-rate throttling."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from video_forge.transcoder.engine.base import ProgressEvent, timemark_to_seconds
from video_forge.transcoder.models import ProgressUpdate

logger = logging.getLogger(__name__)


def compute_percent(event: ProgressEvent, *, duration_seconds: float | None) -> float | None:
    """Best-effort percent: engine value when usable, else timemark / duration."""

    if event.percent is not None and math.isfinite(event.percent) and event.percent >= 0:
        return event.percent
    if duration_seconds is None or duration_seconds <= 0 or not event.timemark:
        return None
    elapsed = timemark_to_seconds(event.timemark)
    if elapsed is None:
        return None
    return elapsed / duration_seconds * 100


def build_progress_update(
    *,
    percent: float | None,
    current_kbps: float | None,
) -> ProgressUpdate:
    """Keep only present and valid fields. Zero percent is a real value."""

    progress = None
    if percent is not None and math.isfinite(percent) and percent >= 0:
        progress = min(math.ceil(percent), 100)
    bitrate = None
    if current_kbps is not None and math.isfinite(current_kbps) and current_kbps > 0:
        bitrate = f"{round(current_kbps)} kbps"
    return ProgressUpdate(progress=progress, current_bitrate=bitrate)


class ProgressThrottler:
    """Forward at most one progress write per window to ``sink``.

    The first window opens when the throttler is created. Samples arriving
    inside an open window are dropped, not buffered.
    """

    def __init__(
        self,
        *,
        sink: Callable[[ProgressUpdate], object],
        interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last_write = clock()
        self.writes = 0

    def offer(self, *, percent: float | None, current_kbps: float | None) -> ProgressUpdate | None:
        """Persist the sample if the window elapsed; return what was written."""

        now = self._clock()
        if now - self._last_write < self.interval_seconds:
            return None
        update = build_progress_update(percent=percent, current_kbps=current_kbps)
        if update.is_empty():
            return None
        self._last_write = now
        try:
            self._sink(update)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to persist progress %s", update, exc_info=True)
            return None
        self.writes += 1
        return update
