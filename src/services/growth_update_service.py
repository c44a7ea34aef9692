"""Growth-update cycle for planted trees: image batches every 30 days."""

import logging
import uuid
from datetime import UTC, date, datetime, time, timedelta

from src.core import db_client
from src.core.config import constants
from src.core.db_client import sanitize_param
from src.core.errors import ConflictError, InvalidInputError, InvalidTransitionError
from src.core.logging import log_task_event, span
from src.domain.create_models import GrowthUpdateSubmission
from src.domain.task import GrowthUpdate, Task, TaskStatus
from src.interface import blob_storage
from src.models.service_models import ImageUpload
from src.services import task_state_machine


logger = logging.getLogger(__name__)

GROWTH_STATUSES = (TaskStatus.COMPLETED, TaskStatus.UPDATING)


def days_since_planting(completed_at: datetime, now: datetime) -> int:
    """Whole days elapsed since completion, rounded down."""
    return max((now - completed_at) // timedelta(days=1), 0)


async def submit_growth_update(
    *,
    submission: GrowthUpdateSubmission,
    images: list[ImageUpload],
    wellwisher_id: str | None = None,
) -> GrowthUpdate:
    """Append a growth update and push the next due date out by the growth interval.

    The append and the due-date reset are one write conditioned on the status
    that was read, so a concurrent escalation makes this request fail with a
    conflict instead of interleaving.
    """
    with span("growth_update_service.submit_growth_update"):
        task_state_machine.validate_images(images)
        task = await task_state_machine.get_task(
            order_id=submission.order_id, task_id=submission.task_id, wellwisher_id=wellwisher_id
        )

        if task.status not in GROWTH_STATUSES:
            raise InvalidTransitionError(f"Growth updates need a planted task; task is {task.status}")
        if task.planting_details is None:
            raise InvalidInputError(f"Task {task.task_id} has no planting details")

        days = days_since_planting(task.planting_details.completed_at, datetime.now(UTC))
        blobs = await task_state_machine.upload_task_images(
            images=images, caption=f"Growth update image - Day {days}"
        )

        now = datetime.now(UTC)
        update = GrowthUpdate(
            update_id=uuid.uuid4().hex,
            uploaded_at=now,
            images=blobs,
            notes=submission.notes.strip(),
            days_since_planting=days,
        )

        external_ids = [blob.external_id for blob in blobs]
        try:
            changed = await db_client.update_where(
                collection="tasks",
                match={"order_id": int(task.order_id), "task_id": task.task_id, "status": task.status},
                data={"next_growth_update_due": now + timedelta(days=constants.GROWTH_UPDATE_INTERVAL_DAYS)},
                append={"growth_updates": update.model_dump(mode="json")},
            )
        except Exception:
            await blob_storage.delete_images(external_ids=external_ids)
            raise
        if changed == 0:
            await blob_storage.delete_images(external_ids=external_ids)
            log_task_event(
                logger, "warning", "Growth update lost a race", order_id=task.order_id, task_id=task.task_id
            )
            raise ConflictError(f"Task {task.task_id} was modified by another request")

        log_task_event(
            logger,
            "info",
            "Growth update recorded",
            order_id=task.order_id,
            task_id=task.task_id,
            days_since_planting=days,
            images=len(blobs),
        )
        return update


def growth_due_filter(*, today: date | None = None, wellwisher_id: str | None = None) -> str:
    """Filter for planted tasks whose next growth update is due by the end of ``today``."""
    day = today or datetime.now(UTC).date()
    start_of_tomorrow = datetime.combine(day + timedelta(days=1), time.min, tzinfo=UTC)
    status_filter = " || ".join(f'status = "{status}"' for status in GROWTH_STATUSES)
    filter_query = f'({status_filter}) && next_growth_update_due < "{start_of_tomorrow.isoformat()}"'
    if wellwisher_id is not None:
        filter_query += f' && wellwisher_id = "{sanitize_param(wellwisher_id)}"'
    return filter_query


async def list_tasks_needing_growth_update(
    *,
    wellwisher_id: str | None = None,
    today: date | None = None,
    page: int = 1,
    per_page: int = constants.MAX_PAGE_SIZE,
) -> list[Task]:
    """Planted tasks whose growth update is due today or overdue, most overdue first."""
    records = await db_client.list_records(
        collection="tasks",
        filter_query=growth_due_filter(today=today, wellwisher_id=wellwisher_id),
        sort="+next_growth_update_due,+id",
        page=page,
        per_page=per_page,
    )
    return [Task(**record) for record in records]
