"""Tests for scheduler job tracking and retry functionality."""

from unittest.mock import AsyncMock, patch

import pytest

from src.core.scheduler_tracker import JobTracker, retry_job_with_backoff


@pytest.fixture
def job_tracker() -> JobTracker:
    """Create a job tracker instance for testing."""
    return JobTracker()


@pytest.fixture
def no_sleep():
    """Skip backoff delays between retries."""
    with patch("src.core.scheduler_tracker.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        yield mock_sleep


@pytest.mark.unit
async def test_record_job_start(job_tracker: JobTracker) -> None:
    """Test recording job start."""
    await job_tracker.record_job_start("escalation_sweep")

    status = await job_tracker.get_job_status("escalation_sweep")
    assert status["currently_running"] is True
    assert status["current_run_started"] is not None


@pytest.mark.unit
async def test_record_job_success_keeps_summary(job_tracker: JobTracker) -> None:
    """Test that a successful run stores the job's result counters."""
    await job_tracker.record_job_start("escalation_sweep")
    await job_tracker.record_job_success("escalation_sweep", {"scanned": 4, "escalated": 3})

    status = await job_tracker.get_job_status("escalation_sweep")
    assert status["last_success"] is not None
    assert status["last_result"] == {"scanned": 4, "escalated": 3}
    assert status["consecutive_failures"] == 0
    assert status["success_count"] == 1
    assert status["currently_running"] is False


@pytest.mark.unit
async def test_record_job_failure(job_tracker: JobTracker) -> None:
    """Test recording failed job execution."""
    await job_tracker.record_job_start("escalation_sweep")
    consecutive = await job_tracker.record_job_failure("escalation_sweep", "database is locked")

    status = await job_tracker.get_job_status("escalation_sweep")
    assert consecutive == 1
    assert status["last_error"] == "database is locked"
    assert status["failure_count"] == 1
    assert status["currently_running"] is False


@pytest.mark.unit
async def test_consecutive_failures_reset_on_success(job_tracker: JobTracker) -> None:
    """Test that consecutive failures are tracked and reset."""
    await job_tracker.record_job_failure("assignment_retry", "Error 1")
    assert await job_tracker.record_job_failure("assignment_retry", "Error 2") == 2

    await job_tracker.record_job_success("assignment_retry")
    status = await job_tracker.get_job_status("assignment_retry")
    assert status["consecutive_failures"] == 0
    assert status["failure_count"] == 2


@pytest.mark.unit
async def test_dead_letter_queue_max_size(job_tracker: JobTracker) -> None:
    """Test that dead letter queue respects max size limit."""
    for i in range(150):
        await job_tracker.add_to_dead_letter_queue(f"job_{i}", f"error_{i}", "context")

    dlq = job_tracker.get_dead_letter_queue()
    assert len(dlq) == 100
    assert dlq[0]["job_name"] == "job_50"


@pytest.mark.unit
async def test_error_truncation(job_tracker: JobTracker) -> None:
    """Test that long error messages are truncated."""
    await job_tracker.record_job_failure("escalation_sweep", "x" * 1000)

    status = await job_tracker.get_job_status("escalation_sweep")
    assert len(status["last_error"]) == 500


@pytest.mark.unit
async def test_retry_job_with_backoff_success_first_try(no_sleep) -> None:
    """Test successful job execution on first try."""
    mock_job = AsyncMock(return_value={"scanned": 0})

    with patch("src.core.scheduler_tracker.job_tracker") as mock_tracker:
        mock_tracker.record_job_start = AsyncMock()
        mock_tracker.record_job_success = AsyncMock()

        await retry_job_with_backoff(mock_job, "escalation_sweep")

        mock_job.assert_called_once()
        mock_tracker.record_job_start.assert_called_once_with("escalation_sweep")
        mock_tracker.record_job_success.assert_called_once_with("escalation_sweep", {"scanned": 0})
        no_sleep.assert_not_called()


@pytest.mark.unit
async def test_retry_job_with_backoff_success_after_retry(no_sleep) -> None:
    """Test successful job execution after retries."""
    mock_job = AsyncMock(side_effect=[Exception("Error 1"), Exception("Error 2"), None])

    with patch("src.core.scheduler_tracker.job_tracker") as mock_tracker:
        mock_tracker.record_job_start = AsyncMock()
        mock_tracker.record_job_success = AsyncMock()

        await retry_job_with_backoff(mock_job, "escalation_sweep", max_retries=3)

        assert mock_job.call_count == 3
        assert no_sleep.call_count == 2
        mock_tracker.record_job_success.assert_called_once_with("escalation_sweep", None)


@pytest.mark.unit
async def test_retry_job_with_backoff_all_retries_exhausted(no_sleep) -> None:
    """Test job failure after all retries exhausted."""
    mock_job = AsyncMock(side_effect=Exception("Persistent error"))

    with patch("src.core.scheduler_tracker.job_tracker") as mock_tracker:
        mock_tracker.record_job_start = AsyncMock()
        mock_tracker.record_job_failure = AsyncMock(return_value=1)
        mock_tracker.add_to_dead_letter_queue = AsyncMock()

        await retry_job_with_backoff(mock_job, "escalation_sweep", max_retries=3)

        assert mock_job.call_count == 3
        mock_tracker.record_job_failure.assert_called_once()
        mock_tracker.add_to_dead_letter_queue.assert_not_called()


@pytest.mark.unit
async def test_retry_job_with_backoff_adds_to_dlq_after_consecutive_failures(no_sleep) -> None:
    """Test that job is added to DLQ after 3+ consecutive failures."""
    mock_job = AsyncMock(side_effect=Exception("Persistent error"))

    with patch("src.core.scheduler_tracker.job_tracker") as mock_tracker:
        mock_tracker.record_job_start = AsyncMock()
        mock_tracker.record_job_failure = AsyncMock(return_value=3)
        mock_tracker.add_to_dead_letter_queue = AsyncMock()

        await retry_job_with_backoff(mock_job, "escalation_sweep", max_retries=2)

        mock_tracker.add_to_dead_letter_queue.assert_called_once_with(
            job_name="escalation_sweep",
            error="Persistent error",
            context="Failed 3 consecutive times",
        )


@pytest.mark.unit
async def test_get_job_status_for_nonexistent_job(job_tracker: JobTracker) -> None:
    """Test getting status for a job that hasn't run yet."""
    status = await job_tracker.get_job_status("nonexistent_job")

    assert status["job_name"] == "nonexistent_job"
    assert status["last_success"] is None
    assert status["last_result"] is None
    assert status["consecutive_failures"] == 0
    assert status["currently_running"] is False
