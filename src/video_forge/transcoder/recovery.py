"""Startup repair of tasks orphaned by a dead worker process."""

from __future__ import annotations

import logging

from video_forge.transcoder.repository import TaskRepository
from video_forge.transcoder.scheduler import FAILED_ERROR_PREFIX

logger = logging.getLogger(__name__)

RECOVERED_ERROR = "Recovered from worker crash"


def recover_stale_tasks(repository: TaskRepository, *, max_retries: int = 3) -> int:
    """Repair every PROCESSING task, counting the crash as a consumed retry.

    Tasks that still have retries left are requeued; tasks already at
    ``max_retries`` are marked FAILED. Must run before the scheduler loop
    starts claiming. Errors are logged and reported as zero recovered tasks
    so that startup can continue.
    """

    logger.info("Checking for stale tasks...")
    try:
        count = repository.requeue_all_processing(
            error=RECOVERED_ERROR,
            failed_error=f"{FAILED_ERROR_PREFIX} {RECOVERED_ERROR}",
            max_retries=max_retries,
        )
    except Exception:
        logger.exception("Failed to recover stale tasks")
        return 0
    if count > 0:
        logger.warning("Recovered %d stale tasks.", count)
    else:
        logger.info("No stale tasks found.")
    return count
