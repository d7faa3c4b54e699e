"""Job execution tracking and monitoring for scheduled jobs."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from pydantic import BaseModel


logger = logging.getLogger(__name__)

CONSECUTIVE_FAILURE_THRESHOLD = 3


class JobStatus(BaseModel):
    """Execution history of one scheduled job."""

    job_name: str
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    success_count: int = 0
    failure_count: int = 0
    current_run_started: datetime | None = None

    @property
    def currently_running(self) -> bool:
        return self.current_run_started is not None

    @property
    def healthy(self) -> bool:
        return self.consecutive_failures < CONSECUTIVE_FAILURE_THRESHOLD


class JobTracker:
    """Track job execution history and health status in memory."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobStatus] = {}

    def _status(self, job_name: str) -> JobStatus:
        if job_name not in self._jobs:
            self._jobs[job_name] = JobStatus(job_name=job_name)
        return self._jobs[job_name]

    def record_job_start(self, job_name: str) -> None:
        self._status(job_name).current_run_started = datetime.now(UTC)

    def record_job_success(self, job_name: str) -> None:
        status = self._status(job_name)
        status.last_success = datetime.now(UTC)
        status.consecutive_failures = 0
        status.success_count += 1
        status.current_run_started = None

    def record_job_failure(self, job_name: str, error: str) -> int:
        """Record a failed run.

        Returns:
            Number of consecutive failures including this one
        """
        status = self._status(job_name)
        status.last_failure = datetime.now(UTC)
        status.last_error = error[:500]  # Truncate long errors
        status.consecutive_failures += 1
        status.failure_count += 1
        status.current_run_started = None
        return status.consecutive_failures

    def get_job_status(self, job_name: str) -> JobStatus:
        return self._status(job_name).model_copy()

    def reset(self) -> None:
        self._jobs.clear()


# Global job tracker instance
job_tracker = JobTracker()


async def run_tracked_job(job_func: Callable[[], Awaitable[None]], job_name: str) -> None:
    """Execute a job, recording its outcome. Failures are logged, never raised to the scheduler."""
    job_tracker.record_job_start(job_name)
    try:
        await job_func()
    except Exception as e:
        consecutive_failures = job_tracker.record_job_failure(job_name, str(e))
        logger.error(
            f"{job_name} failed",
            extra={"error": str(e), "consecutive_failures": consecutive_failures},
        )
        return

    job_tracker.record_job_success(job_name)
    logger.info("%s completed successfully", job_name)
