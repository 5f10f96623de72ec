"""Polling scheduler that turns queued tasks into bounded concurrent encodes."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from video_forge.transcoder.engine.base import EncodeError, EncodeRequest, TranscodeEngine
from video_forge.transcoder.models import ProgressUpdate
from video_forge.transcoder.progress import ProgressThrottler, compute_percent
from video_forge.transcoder.repository import TaskRepository
from video_forge.transcoder.variants import derive_encode_parameters

logger = logging.getLogger(__name__)

RETRY_ERROR_PREFIX = "Retrying... Last error:"
FAILED_ERROR_PREFIX = "[PROCESSING_FAILED]"


class TickOutcome(str, Enum):
    """Result of one scheduler loop iteration."""

    DISPATCHED = "dispatched"
    CLAIM_LOST = "claim_lost"
    SATURATED = "saturated"
    DRAINING = "draining"
    IDLE = "idle"
    ERROR = "error"


class TaskOutcome(str, Enum):
    """Result of one task execution."""

    COMPLETED = "completed"
    RETRIED = "retried"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class SchedulerRunSummary:
    """Aggregate scheduler counters for CLI reporting."""

    dispatched: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    idle_polls: int = 0
    loop_errors: int = 0
    peak_in_flight: int = 0


class _InFlightSlots:
    """Count of dispatched executions that have not finished yet."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def acquire(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def release(self) -> None:
        with self._lock:
            if self._count <= 0:
                raise RuntimeError("In-flight counter released more times than acquired.")
            self._count -= 1


class TranscodeScheduler:
    """Claims queued tasks and runs each encode in its own thread.

    The claim is a conditional QUEUED -> PROCESSING update, which is the only
    guard against two loops (or processes) executing the same task.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        engine: TranscodeEngine,
        output_dir: Path,
        concurrency_limit: int = 3,
        idle_interval_seconds: float = 2.0,
        saturated_interval_seconds: float = 1.0,
        max_retries: int = 3,
        progress_interval_seconds: float = 1.0,
    ) -> None:
        if concurrency_limit <= 0:
            raise ValueError("concurrency_limit must be a positive integer.")
        self.repository = repository
        self.engine = engine
        self.output_dir = output_dir
        self.concurrency_limit = concurrency_limit
        self.idle_interval_seconds = idle_interval_seconds
        self.saturated_interval_seconds = saturated_interval_seconds
        self.max_retries = max_retries
        self.progress_interval_seconds = progress_interval_seconds
        self._slots = _InFlightSlots(concurrency_limit)
        self._stop_requested = threading.Event()
        self._summary = SchedulerRunSummary()
        self._summary_lock = threading.Lock()
        self._threads: set[threading.Thread] = set()
        self._threads_lock = threading.Lock()

    @property
    def in_flight(self) -> int:
        return self._slots.count

    @property
    def summary(self) -> SchedulerRunSummary:
        with self._summary_lock:
            return replace(self._summary)

    def stop(self) -> None:
        """Stop claiming new work. Running encodes are left to finish."""

        self._stop_requested.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for dispatched executions; True when none are left running."""

        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout=timeout)
        return self.in_flight == 0

    def run_loop(self, *, max_idle_polls: int | None = None) -> SchedulerRunSummary:
        """Run until stopped.

        Args:
            max_idle_polls: Exit after this many consecutive polls that found
                no queued task and nothing in flight (None = run forever).
        """

        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Scheduler started with concurrency_limit=%d", self.concurrency_limit)
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested.is_set():
                outcome = self.tick()
                if outcome in {TickOutcome.DISPATCHED, TickOutcome.CLAIM_LOST}:
                    consecutive_idle = 0
                    continue
                if outcome is TickOutcome.SATURATED:
                    consecutive_idle = 0
                    self._stop_requested.wait(self.saturated_interval_seconds)
                    continue
                if outcome is TickOutcome.IDLE:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0
                self._stop_requested.wait(self.idle_interval_seconds)
        logger.info("Scheduler loop exited with %d task(s) in flight", self.in_flight)
        return self.summary

    def tick(self) -> TickOutcome:
        """One loop iteration: claim and dispatch at most one task. Never raises."""

        try:
            in_flight = self._slots.count
            if in_flight >= self._slots.limit:
                return TickOutcome.SATURATED

            candidate = self.repository.find_oldest_queued()
            if candidate is None:
                if in_flight == 0:
                    self._bump(idle_polls=1)
                    return TickOutcome.IDLE
                return TickOutcome.DRAINING

            if not self.repository.claim(task_id=candidate.task_id):
                logger.debug("Task %s was claimed by another worker", candidate.task_id)
                return TickOutcome.CLAIM_LOST
        except Exception:
            logger.exception("Scheduler loop error")
            self._bump(loop_errors=1)
            return TickOutcome.ERROR

        self._dispatch(task_id=candidate.task_id)
        return TickOutcome.DISPATCHED

    def process_task(self, task_id: str) -> TaskOutcome:
        """Execute one claimed task and record its terminal or retry state."""

        try:
            task = self.repository.get_task(task_id=task_id)
            if task is None or task.video_path is None:
                logger.warning("Task %s disappeared before execution", task_id)
                return TaskOutcome.SKIPPED

            parameters = derive_encode_parameters(task.variant)
            source_path = Path(task.video_path)
            output_path = self.output_dir / f"{task.task_id}.{parameters.container_ext}"
            logger.info(
                "[Slot %d/%d] Starting task %s (%s) for video %s",
                self.in_flight,
                self.concurrency_limit,
                task.task_id,
                task.variant,
                task.video_name,
            )

            duration = self._probe_duration(source_path=source_path, task_id=task_id)
            throttler = ProgressThrottler(
                sink=lambda update: self._write_progress(task_id=task_id, update=update),
                interval_seconds=self.progress_interval_seconds,
            )
            for event in self.engine.encode(
                EncodeRequest(
                    source_path=source_path,
                    output_path=output_path,
                    parameters=parameters,
                ),
            ):
                percent = compute_percent(event, duration_seconds=duration)
                logger.debug(
                    "[Task %s] Progress: %s%% | %s kbps",
                    task_id,
                    round(percent) if percent is not None else "?",
                    event.current_kbps,
                )
                throttler.offer(percent=percent, current_kbps=event.current_kbps)

            output_size = output_path.stat().st_size
            if not self.repository.complete_task(
                task_id=task_id,
                output_path=str(output_path),
                output_size=output_size,
            ):
                logger.warning(
                    "Task %s was no longer PROCESSING at completion, discarding %s",
                    task_id,
                    output_path,
                )
                output_path.unlink(missing_ok=True)
                return TaskOutcome.SKIPPED
            logger.info(
                "Task %s COMPLETED. Size: %.2fMB",
                task_id,
                output_size / 1024 / 1024,
            )
            return TaskOutcome.COMPLETED
        except EncodeError as error:
            logger.warning("Task %s failed: %s", task_id, error)
            return self._apply_failure_policy(task_id=task_id, error=error)
        except Exception as error:
            logger.exception("Task %s failed unexpectedly", task_id)
            return self._apply_failure_policy(task_id=task_id, error=error)

    def _dispatch(self, *, task_id: str) -> None:
        peak = self._slots.acquire()
        self._bump(dispatched=1, peak_in_flight=peak)
        thread = threading.Thread(
            target=self._run_dispatched,
            args=(task_id,),
            daemon=True,
            name=f"transcode-{task_id[:8]}",
        )
        with self._threads_lock:
            self._threads.add(thread)
        try:
            thread.start()
        except RuntimeError as error:
            with self._threads_lock:
                self._threads.discard(thread)
            try:
                self._record(self._apply_failure_policy(task_id=task_id, error=error))
            finally:
                self._slots.release()

    def _run_dispatched(self, task_id: str) -> None:
        try:
            self._record(self.process_task(task_id))
        finally:
            self._slots.release()
            with self._threads_lock:
                self._threads.discard(threading.current_thread())

    def _probe_duration(self, *, source_path: Path, task_id: str) -> float | None:
        try:
            duration = self.engine.probe_duration(source_path)
        except Exception:  # noqa: BLE001
            logger.warning("Duration probe failed for task %s", task_id, exc_info=True)
            return None
        if duration is not None:
            logger.info("[Task %s] Duration: %.2fs", task_id, duration)
        return duration

    def _write_progress(self, *, task_id: str, update: ProgressUpdate) -> None:
        self.repository.update_progress(task_id=task_id, update=update)

    def _apply_failure_policy(self, *, task_id: str, error: BaseException) -> TaskOutcome:
        message = str(error) or "Unknown error"
        try:
            current = self.repository.get_task(task_id=task_id)
            if current is None:
                logger.warning("Task %s disappeared before its failure was recorded", task_id)
                return TaskOutcome.SKIPPED
            if current.retries < self.max_retries:
                logger.info(
                    "Task %s failed, retrying (%d/%d)...",
                    task_id,
                    current.retries + 1,
                    self.max_retries,
                )
                self.repository.requeue_for_retry(
                    task_id=task_id,
                    error=f"{RETRY_ERROR_PREFIX} {message}",
                )
                return TaskOutcome.RETRIED
            logger.error("Task %s FAILED after %d retries: %s", task_id, current.retries, message)
            self.repository.fail_task(task_id=task_id, error=f"{FAILED_ERROR_PREFIX} {message}")
            return TaskOutcome.FAILED
        except Exception:
            logger.exception("Failed to update error status for task %s", task_id)
            return TaskOutcome.SKIPPED

    def _record(self, outcome: TaskOutcome) -> None:
        if outcome is TaskOutcome.COMPLETED:
            self._bump(completed=1)
        elif outcome is TaskOutcome.RETRIED:
            self._bump(retried=1)
        elif outcome is TaskOutcome.FAILED:
            self._bump(failed=1)
        else:
            self._bump(skipped=1)

    def _bump(self, **deltas: int) -> None:
        with self._summary_lock:
            for name, delta in deltas.items():
                if name == "peak_in_flight":
                    self._summary.peak_in_flight = max(self._summary.peak_in_flight, delta)
                    continue
                setattr(self._summary, name, getattr(self._summary, name) + delta)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("Received %s, no new tasks will be claimed", name)
            self.stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
