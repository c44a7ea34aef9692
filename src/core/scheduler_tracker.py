"""Run history for the daily jobs, with retry/backoff and a dead-letter queue.

State lives in process memory; a restart starts every job with a clean record.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from src.core.config import constants


logger = logging.getLogger(__name__)

CONSECUTIVE_FAILURE_THRESHOLD = 3
MAX_ERROR_LENGTH = 500

JobBody = Callable[[], Awaitable[dict[str, Any] | None]]


class JobRecord(BaseModel):
    """Run history of one named job."""

    job_name: str
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_error: str | None = None
    last_result: dict[str, Any] | None = None
    consecutive_failures: int = 0
    success_count: int = 0
    failure_count: int = 0
    current_run_started: datetime | None = None

    @property
    def currently_running(self) -> bool:
        return self.current_run_started is not None


class DeadLetter(BaseModel):
    """A job that kept failing across scheduled runs."""

    job_name: str
    error: str
    context: str
    added_at: datetime


class JobTracker:
    """Keeps a JobRecord per job name and a bounded dead-letter queue."""

    def __init__(self) -> None:
        self._records: dict[str, JobRecord] = {}
        self._dead_letters: deque[DeadLetter] = deque(maxlen=constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN)

    def _record(self, job_name: str) -> JobRecord:
        if job_name not in self._records:
            self._records[job_name] = JobRecord(job_name=job_name)
        return self._records[job_name]

    async def record_job_start(self, job_name: str) -> None:
        self._record(job_name).current_run_started = datetime.now(UTC)

    async def record_job_success(self, job_name: str, summary: dict[str, Any] | None = None) -> None:
        """Close the current run as a success, keeping the job's result counters if it reported any."""
        record = self._record(job_name)
        record.last_success = datetime.now(UTC)
        record.consecutive_failures = 0
        record.success_count += 1
        if summary is not None:
            record.last_result = summary
        record.current_run_started = None

    async def record_job_failure(self, job_name: str, error: str) -> int:
        """Close the current run as a failure.

        Returns:
            The number of failed runs in a row, including this one
        """
        record = self._record(job_name)
        record.last_failure = datetime.now(UTC)
        record.last_error = error[:MAX_ERROR_LENGTH]
        record.consecutive_failures += 1
        record.failure_count += 1
        record.current_run_started = None
        return record.consecutive_failures

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        """JSON-ready status for the health endpoint; unknown jobs report an empty history."""
        record = self._records.get(job_name) or JobRecord(job_name=job_name)
        status = record.model_dump(mode="json")
        status["currently_running"] = record.currently_running
        return status

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        letter = DeadLetter(job_name=job_name, error=error, context=context, added_at=datetime.now(UTC))
        self._dead_letters.append(letter)
        logger.error("Job added to dead letter queue", extra=letter.model_dump(mode="json"))

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        """Oldest first; the oldest entries fall off once the queue is full."""
        return [letter.model_dump(mode="json", exclude={"added_at"}) for letter in self._dead_letters]


# Global job tracker instance
job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: JobBody,
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
) -> None:
    """Run a job body, retrying with exponential backoff, and record the outcome.

    Jobs here only issue conditional writes, so a retry after a partial run
    does not repeat work that already landed.

    Args:
        job_func: Job body; may return a summary dict
        job_name: Name the run is tracked under
        max_retries: Attempts before the run counts as failed
        base_delay: Backoff base in seconds; attempt n waits base_delay ** n
    """
    await job_tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(1, max_retries + 1):
        try:
            summary = await job_func()
        except Exception as e:
            last_error = str(e)
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt, max_retries, last_error)
            if attempt < max_retries:
                await asyncio.sleep(base_delay ** (attempt - 1))
            continue

        await job_tracker.record_job_success(job_name, summary)
        logger.info("%s completed", job_name, extra={"attempt": attempt, "summary": summary})
        return

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = await job_tracker.record_job_failure(job_name, error_msg)
    logger.critical(
        "%s failed after all retry attempts",
        job_name,
        extra={"error": error_msg, "consecutive_failures": consecutive_failures},
    )

    if consecutive_failures >= CONSECUTIVE_FAILURE_THRESHOLD:
        await job_tracker.add_to_dead_letter_queue(
            job_name=job_name,
            error=last_error or "Unknown error",
            context=f"Failed {consecutive_failures} consecutive times",
        )
