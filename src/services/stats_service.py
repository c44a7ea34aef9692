"""Read-side projections for the wellwisher dashboard."""

import logging
import math
from datetime import UTC, datetime, time, timedelta

from src.core import db_client
from src.core.config import constants
from src.core.db_client import sanitize_param
from src.core.logging import span
from src.domain.task import Task, TaskStatus
from src.models.service_models import ActivityEntry, Pagination, TaskListing, WellwisherStats
from src.services import growth_update_service


logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60
MINUTES_PER_HOUR = 60
HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''} ago"


def format_time_ago(timestamp: datetime, now: datetime | None = None) -> str:
    """Humanize a past timestamp: "Just now", "5 minutes ago", ... then a plain date after a week."""
    current = now or datetime.now(UTC)
    elapsed = current - timestamp
    if elapsed < timedelta(0):
        return timestamp.strftime("%b %d, %Y")

    minutes = int(elapsed.total_seconds() // SECONDS_PER_MINUTE)
    hours = minutes // MINUTES_PER_HOUR
    days = hours // HOURS_PER_DAY

    if minutes < 1:
        return "Just now"
    if minutes < MINUTES_PER_HOUR:
        return _plural(minutes, "minute")
    if hours < HOURS_PER_DAY:
        return _plural(hours, "hour")
    if days < DAYS_PER_WEEK:
        return _plural(days, "day")
    return timestamp.strftime("%b %d, %Y")


def _latest_activity(task: Task) -> tuple[str, datetime]:
    """Most recent event on a task; falls back to its scheduled date."""
    events: list[tuple[datetime, str]] = []
    if task.planting_details is not None:
        events.append((task.planting_details.planted_at, "planting"))
    if task.completed_at is not None:
        events.append((task.completed_at, "completed"))
    if task.growth_updates:
        events.append((task.growth_updates[-1].uploaded_at, "growth_update"))
    if not events:
        return "scheduled", task.scheduled_date

    timestamp, kind = max(events, key=lambda event: event[0])
    return kind, timestamp


def project_stats(tasks: list[Task], *, now: datetime) -> WellwisherStats:
    """Pure aggregation of one worker's tasks."""
    counts = dict.fromkeys(TaskStatus, 0)
    for task in tasks:
        counts[task.status] += 1

    planted = [task for task in tasks if task.status in (TaskStatus.COMPLETED, TaskStatus.UPDATING)]
    start_of_tomorrow = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=UTC)
    needs_update = sum(
        1 for task in planted if task.next_growth_update_due and task.next_growth_update_due < start_of_tomorrow
    )

    activity = []
    for task in tasks:
        kind, timestamp = _latest_activity(task)
        activity.append(
            ActivityEntry(
                type=kind,
                order_id=task.order_id,
                task_id=task.task_id,
                title=task.title,
                timestamp=timestamp,
                time_ago=format_time_ago(timestamp, now),
            )
        )
    activity.sort(key=lambda entry: entry.timestamp, reverse=True)

    return WellwisherStats(
        upcoming_tasks=counts[TaskStatus.PENDING],
        ongoing_tasks=counts[TaskStatus.IN_PROGRESS],
        completed_tasks=counts[TaskStatus.COMPLETED],
        updating_tasks=counts[TaskStatus.UPDATING],
        needs_growth_update=needs_update,
        trees_helped=sum(task.tree_quantity for task in planted),
        recent_activity=activity[: constants.RECENT_ACTIVITY_LIMIT],
    )


async def _all_tasks_for(wellwisher_id: str) -> list[Task]:
    tasks: list[Task] = []
    page = 1
    while True:
        records = await db_client.list_records(
            collection="tasks",
            filter_query=f'wellwisher_id = "{sanitize_param(wellwisher_id)}"',
            page=page,
            per_page=constants.MAX_PAGE_SIZE,
        )
        tasks.extend(Task(**record) for record in records)
        if len(records) < constants.MAX_PAGE_SIZE:
            return tasks
        page += 1


async def get_wellwisher_stats(*, wellwisher_id: str, now: datetime | None = None) -> WellwisherStats:
    """Dashboard counts, trees helped and recent activity for one worker."""
    with span("stats_service.get_wellwisher_stats"):
        tasks = await _all_tasks_for(wellwisher_id)
        stats = project_stats(tasks, now=now or datetime.now(UTC))
        logger.debug("Computed stats", extra={"wellwisher_id": wellwisher_id, "tasks": len(tasks)})
        return stats


async def list_wellwisher_tasks(
    *,
    wellwisher_id: str,
    status: TaskStatus | None = None,
    needs_growth_update: bool = False,
    page: int = 1,
    limit: int = constants.DEFAULT_TASK_PAGE_SIZE,
) -> TaskListing:
    """A page of one worker's tasks, by status or by growth-update due date."""
    with span("stats_service.list_wellwisher_tasks"):
        page = max(page, 1)
        limit = max(1, min(limit, constants.MAX_PAGE_SIZE))

        if needs_growth_update:
            filter_query = growth_update_service.growth_due_filter(wellwisher_id=wellwisher_id)
            sort = "+next_growth_update_due,+id"
        else:
            filter_query = f'wellwisher_id = "{sanitize_param(wellwisher_id)}"'
            if status is not None:
                filter_query += f' && status = "{status}"'
            sort = "+scheduled_date,+id"

        total = await db_client.count_records(collection="tasks", filter_query=filter_query)
        records = await db_client.list_records(
            collection="tasks", filter_query=filter_query, sort=sort, page=page, per_page=limit
        )
        total_pages = math.ceil(total / limit)

        return TaskListing(
            tasks=[Task(**record) for record in records],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_count=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )
