"""Unit tests for stats_service module."""

from datetime import UTC, datetime, timedelta

import pytest

from src.domain.task import GrowthUpdate, PlantingDetails, Task, TaskImage, TaskStatus
from src.services import stats_service, task_state_machine
from tests.unit.factories import create_buyer, create_paid_order, create_wellwisher, plant_task


NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


def _image(at: datetime) -> TaskImage:
    return TaskImage(url="https://blobs.test/1.jpg", external_id="blob-1", uploaded_at=at)


def _task(
    task_id: str,
    status: TaskStatus,
    *,
    completed_at: datetime | None = None,
    growth_at: list[datetime] | None = None,
    quantity: int = 1,
    scheduled: datetime = NOW + timedelta(days=1),
) -> Task:
    details = None
    next_due = None
    if completed_at is not None:
        details = PlantingDetails(planted_at=completed_at, completed_at=completed_at, images=[_image(completed_at)])
        next_due = (growth_at[-1] if growth_at else completed_at) + timedelta(days=30)
    return Task(
        id=task_id,
        order_id="1",
        task_id=task_id,
        wellwisher_id="7",
        item_index=0,
        title=f"Plant and care for {task_id}",
        description="",
        scheduled_date=scheduled,
        status=status,
        location="To be determined",
        tree_quantity=quantity,
        planting_details=details,
        completed_at=completed_at,
        next_growth_update_due=next_due,
        growth_updates=[
            GrowthUpdate(update_id=f"u{i}", uploaded_at=at, images=[_image(at)], days_since_planting=0)
            for i, at in enumerate(growth_at or [])
        ],
        created=NOW - timedelta(days=200),
        updated=NOW,
    )


@pytest.mark.unit
class TestFormatTimeAgo:
    """Tests for humanized timestamps."""

    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(seconds=30), "Just now"),
            (timedelta(minutes=1), "1 minute ago"),
            (timedelta(minutes=45), "45 minutes ago"),
            (timedelta(hours=1), "1 hour ago"),
            (timedelta(hours=23, minutes=59), "23 hours ago"),
            (timedelta(days=1), "1 day ago"),
            (timedelta(days=6, hours=23), "6 days ago"),
        ],
    )
    def test_relative_ranges(self, delta, expected):
        assert stats_service.format_time_ago(NOW - delta, NOW) == expected

    def test_older_than_a_week_shows_date(self):
        assert stats_service.format_time_ago(datetime(2025, 6, 1, tzinfo=UTC), NOW) == "Jun 01, 2025"

    def test_future_shows_date(self):
        assert stats_service.format_time_ago(datetime(2025, 6, 20, tzinfo=UTC), NOW) == "Jun 20, 2025"


@pytest.mark.unit
class TestProjectStats:
    """Tests for the pure aggregation."""

    def test_counts_by_status(self):
        tasks = [
            _task("p1", TaskStatus.PENDING),
            _task("p2", TaskStatus.PENDING),
            _task("i1", TaskStatus.IN_PROGRESS),
            _task("c1", TaskStatus.COMPLETED, completed_at=NOW - timedelta(days=3)),
            _task("u1", TaskStatus.UPDATING, completed_at=NOW - timedelta(days=100)),
        ]

        stats = stats_service.project_stats(tasks, now=NOW)

        assert stats.upcoming_tasks == 2
        assert stats.ongoing_tasks == 1
        assert stats.completed_tasks == 1
        assert stats.updating_tasks == 1

    def test_trees_helped_counts_planted_quantities(self):
        tasks = [
            _task("p1", TaskStatus.PENDING, quantity=10),
            _task("c1", TaskStatus.COMPLETED, completed_at=NOW - timedelta(days=3), quantity=2),
            _task("u1", TaskStatus.UPDATING, completed_at=NOW - timedelta(days=100), quantity=3),
        ]

        assert stats_service.project_stats(tasks, now=NOW).trees_helped == 5

    def test_needs_growth_update_includes_due_today(self):
        tasks = [
            _task("due", TaskStatus.COMPLETED, completed_at=NOW - timedelta(days=30, hours=-6)),
            _task("later", TaskStatus.COMPLETED, completed_at=NOW - timedelta(days=5)),
            _task("overdue", TaskStatus.UPDATING, completed_at=NOW - timedelta(days=120)),
        ]

        assert stats_service.project_stats(tasks, now=NOW).needs_growth_update == 2

    def test_recent_activity_uses_latest_event(self):
        tasks = [
            _task("c1", TaskStatus.COMPLETED, completed_at=NOW - timedelta(days=40), growth_at=[NOW - timedelta(hours=2)]),
            _task("c2", TaskStatus.COMPLETED, completed_at=NOW - timedelta(minutes=10)),
            _task("p1", TaskStatus.PENDING, scheduled=NOW + timedelta(days=2)),
        ]

        activity = stats_service.project_stats(tasks, now=NOW).recent_activity

        assert [(entry.task_id, entry.type) for entry in activity] == [
            ("p1", "scheduled"),
            ("c2", "planting"),
            ("c1", "growth_update"),
        ]
        assert activity[1].time_ago == "10 minutes ago"
        assert activity[2].time_ago == "2 hours ago"

    def test_recent_activity_truncated_to_five(self):
        tasks = [_task(f"p{i}", TaskStatus.PENDING, scheduled=NOW - timedelta(days=i)) for i in range(8)]

        activity = stats_service.project_stats(tasks, now=NOW).recent_activity

        assert [entry.task_id for entry in activity] == ["p0", "p1", "p2", "p3", "p4"]

    def test_empty(self):
        stats = stats_service.project_stats([], now=NOW)

        assert stats.trees_helped == 0
        assert stats.recent_activity == []


@pytest.mark.unit
class TestWellwisherQueries:
    """Tests for the database-backed projections."""

    async def test_stats_for_worker(self, sqlite_db, blob_storage):
        buyer = await create_buyer()
        worker = await create_wellwisher()
        order = await create_paid_order(buyer, 500, 300)
        await plant_task(order, wellwisher_id=worker.id)

        stats = await stats_service.get_wellwisher_stats(wellwisher_id=worker.id)

        assert stats.upcoming_tasks == 1
        assert stats.completed_tasks == 1
        assert stats.trees_helped == 1
        assert stats.recent_activity[0].task_id == order.tasks[1].task_id

    async def test_listing_pagination_and_status_filter(self, sqlite_db):
        buyer = await create_buyer()
        worker = await create_wellwisher()
        order = await create_paid_order(buyer, 10, 20, 30)
        await task_state_machine.start_task(order_id=order.id, task_id=order.tasks[0].task_id)

        first_page = await stats_service.list_wellwisher_tasks(wellwisher_id=worker.id, page=1, limit=2)
        second_page = await stats_service.list_wellwisher_tasks(wellwisher_id=worker.id, page=2, limit=2)
        pending = await stats_service.list_wellwisher_tasks(wellwisher_id=worker.id, status=TaskStatus.PENDING)

        assert [t.task_id for t in first_page.tasks] == [order.tasks[0].task_id, order.tasks[1].task_id]
        assert first_page.pagination.total_count == 3
        assert first_page.pagination.total_pages == 2
        assert first_page.pagination.has_next_page is True
        assert first_page.pagination.has_prev_page is False
        assert [t.task_id for t in second_page.tasks] == [order.tasks[2].task_id]
        assert second_page.pagination.has_next_page is False
        assert len(pending.tasks) == 2

    async def test_listing_needs_growth_update(self, sqlite_db, blob_storage):
        buyer = await create_buyer()
        worker = await create_wellwisher()
        order = await create_paid_order(buyer, 500)
        await plant_task(order, wellwisher_id=worker.id)

        listing = await stats_service.list_wellwisher_tasks(wellwisher_id=worker.id, needs_growth_update=True)

        assert listing.tasks == []
        assert listing.pagination.total_pages == 0
