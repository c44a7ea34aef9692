"""Scheduler for automated daily jobs (escalation, growth-update checks, assignment retry)."""

import logging
from typing import Any, NamedTuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.core.config import settings
from src.core.scheduler_tracker import JobBody, retry_job_with_backoff
from src.services import escalation_service, order_service


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone="UTC")


async def run_escalation_sweep() -> dict[str, Any]:
    """Promote tasks dormant for 90 days into updating.

    Overlapping runs are safe; every write is conditioned on the task state.
    """
    logger.info("Running escalation sweep job")
    result = await escalation_service.run_escalation_sweep()
    return result.model_dump()


async def send_growth_update_reminders() -> dict[str, Any]:
    """Record which planted tasks are due a growth update today."""
    logger.info("Running growth update reminders job")
    due = await escalation_service.log_growth_updates_due()
    return {"due": len(due)}


async def retry_unassigned_orders() -> dict[str, Any]:
    """Assign workers to paid orders that found an empty pool at payment time."""
    logger.info("Running assignment retry job")
    result = await order_service.retry_unassigned_orders()
    return result.model_dump()


class DailyJob(NamedTuple):
    job_id: str
    title: str
    body: JobBody
    hour_setting: str


DAILY_JOBS = (
    DailyJob("escalation_sweep", "Escalate Dormant Planted Tasks", run_escalation_sweep, "escalation_sweep_hour"),
    DailyJob(
        "growth_update_reminders", "Check Growth Updates Due", send_growth_update_reminders, "growth_reminder_hour"
    ),
    DailyJob("assignment_retry", "Retry Unassigned Paid Orders", retry_unassigned_orders, "assignment_retry_hour"),
)

JOB_NAMES = tuple(job.job_id for job in DAILY_JOBS)


def start_scheduler() -> None:
    """Register every daily job and start the scheduler.

    Called from the FastAPI lifespan. Jobs run on the application's event loop.
    """
    logger.info("Starting scheduler")

    for job in DAILY_JOBS:
        hour = getattr(settings, job.hour_setting)
        # AsyncIOScheduler only awaits jobs whose func is itself a coroutine function
        scheduler.add_job(
            retry_job_with_backoff,
            args=(job.body, job.job_id),
            trigger=CronTrigger(hour=hour, minute=0),
            id=job.job_id,
            name=job.title,
            replace_existing=True,
        )
        logger.info("Scheduled %s: daily at %02d:00 UTC", job.job_id, hour)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
