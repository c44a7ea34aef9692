"""Task lifecycle transitions, written as conditional updates on the expected pre-state.

pending -> in_progress -> completed -> updating; a task never moves backwards.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from src.core import db_client
from src.core.config import constants
from src.core.db_client import sanitize_param
from src.core.errors import (
    ConflictError,
    ErrorCode,
    InvalidInputError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from src.core.logging import log_task_event, span
from src.domain.create_models import PlantingSubmission
from src.domain.order import OrderStatus
from src.domain.task import GeoPoint, LocationMeta, PlantingDetails, Task, TaskImage, TaskStatus
from src.interface import blob_storage
from src.models.service_models import ImageUpload


logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.UPDATING}),
    TaskStatus.UPDATING: frozenset(),
}

OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


def validate_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is a legal step.

    A task already in ``target`` was moved there by another request, which is a
    stale read rather than an illegal request. Nothing ever moves back to
    ``pending``, including a pending task.
    """
    if target == TaskStatus.PENDING:
        msg = f"Cannot move task from {current} to {target}"
        raise InvalidTransitionError(msg)
    if current == target:
        msg = f"Task is already {target}"
        raise ConflictError(msg)
    if target not in ALLOWED_TRANSITIONS[current]:
        msg = f"Cannot move task from {current} to {target}"
        raise InvalidTransitionError(msg)


def validate_images(images: list[ImageUpload]) -> None:
    """Check image count, size and type before anything is uploaded."""
    if not constants.MIN_IMAGES_PER_SUBMISSION <= len(images) <= constants.MAX_IMAGES_PER_SUBMISSION:
        msg = (
            f"Between {constants.MIN_IMAGES_PER_SUBMISSION} and {constants.MAX_IMAGES_PER_SUBMISSION} "
            f"images are required, got {len(images)}"
        )
        raise InvalidInputError(msg)

    for image in images:
        if not image.content_type.startswith("image/"):
            raise InvalidInputError(f"{image.filename} is not an image")
        if image.size == 0:
            raise InvalidInputError(f"{image.filename} is empty")
        if image.size > constants.MAX_IMAGE_SIZE_BYTES:
            raise InvalidInputError(f"{image.filename} exceeds the 10MB limit")


async def get_task(*, order_id: str, task_id: str, wellwisher_id: str | None = None) -> Task:
    """Load a task by order and task id.

    When ``wellwisher_id`` is given, the order must be assigned to that worker.

    Raises:
        NotFoundError: If the order or task does not exist
        NotAuthorizedError: If the task belongs to another worker
    """
    record = await db_client.get_first_record(
        collection="tasks",
        filter_query=f'order_id = "{sanitize_param(order_id)}" && task_id = "{sanitize_param(task_id)}"',
    )
    if record is None:
        raise NotFoundError(f"Task {task_id} not found on order {order_id}", code=ErrorCode.ERR_TASK_NOT_FOUND)

    task = Task(**record)
    if wellwisher_id is not None and task.wellwisher_id != wellwisher_id:
        raise NotAuthorizedError(f"Task {task_id} is not assigned to you")
    return task


async def write_transition(*, task: Task, expected: TaskStatus, data: dict[str, Any]) -> None:
    """Conditionally update one task, raising ConflictError if its status moved on."""
    changed = await db_client.update_where(
        collection="tasks",
        match={"order_id": int(task.order_id), "task_id": task.task_id, "status": expected},
        data=data,
    )
    if changed == 0:
        log_task_event(
            logger,
            "warning",
            "Stale task write rejected",
            order_id=task.order_id,
            task_id=task.task_id,
            expected=str(expected),
        )
        raise ConflictError(f"Task {task.task_id} was modified by another request")


async def start_task(*, order_id: str, task_id: str, wellwisher_id: str | None = None) -> Task:
    """pending -> in_progress."""
    with span("task_state_machine.start_task"):
        task = await get_task(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)
        validate_transition(task.status, TaskStatus.IN_PROGRESS)

        # Order status is re-read under the write lock so a racing cancel wins cleanly
        async with db_client.transaction():
            order = await db_client.get_record(collection="orders", record_id=task.order_id)
            if order["status"] == OrderStatus.CANCELLED:
                raise InvalidTransitionError(f"Order {task.order_id} is cancelled")
            await write_transition(task=task, expected=TaskStatus.PENDING, data={"status": TaskStatus.IN_PROGRESS})

        log_task_event(logger, "info", "Task started", order_id=task.order_id, task_id=task.task_id)
        return await get_task(order_id=task.order_id, task_id=task.task_id)


def _planting_details(
    *, submission: PlantingSubmission, blobs: list[TaskImage], now: datetime
) -> PlantingDetails:
    location = None
    location_meta = None
    if submission.lat is not None and submission.lng is not None:
        location = GeoPoint(lat=submission.lat, lng=submission.lng)
        location_meta = LocationMeta(
            accuracy=submission.accuracy,
            altitude=submission.altitude,
            altitude_accuracy=submission.altitude_accuracy,
            heading=submission.heading,
            speed=submission.speed,
            source=submission.location_source,
            permission_state=submission.permission_state,
            client_timestamp=submission.client_timestamp,
        )
    return PlantingDetails(
        planted_at=now,
        completed_at=now,
        location=location,
        location_meta=location_meta,
        images=blobs,
        notes=submission.notes.strip(),
    )


async def upload_task_images(*, images: list[ImageUpload], caption: str) -> list[TaskImage]:
    """Upload images in order; on failure, already-uploaded blobs are removed."""
    uploaded: list[TaskImage] = []
    try:
        for image in images:
            blob = await blob_storage.upload_image(image=image, caption=caption)
            uploaded.append(
                TaskImage(url=blob.url, external_id=blob.external_id, caption=caption, uploaded_at=datetime.now(UTC))
            )
    except Exception:
        await blob_storage.delete_images(external_ids=[image.external_id for image in uploaded])
        raise
    return uploaded


async def complete_planting(
    *,
    submission: PlantingSubmission,
    images: list[ImageUpload],
    wellwisher_id: str | None = None,
) -> Task:
    """in_progress -> completed, recording planting evidence.

    Sets ``next_growth_update_due`` to completion time plus the growth interval.
    """
    with span("task_state_machine.complete_planting"):
        validate_images(images)
        task = await get_task(order_id=submission.order_id, task_id=submission.task_id, wellwisher_id=wellwisher_id)
        validate_transition(task.status, TaskStatus.COMPLETED)

        blobs = await upload_task_images(images=images, caption=f"Planting image for {task.title}")
        now = datetime.now(UTC)
        details = _planting_details(submission=submission, blobs=blobs, now=now)

        try:
            await write_transition(
                task=task,
                expected=TaskStatus.IN_PROGRESS,
                data={
                    "status": TaskStatus.COMPLETED,
                    "planting_details": details.model_dump(mode="json"),
                    "completed_at": now,
                    "next_growth_update_due": now + timedelta(days=constants.GROWTH_UPDATE_INTERVAL_DAYS),
                },
            )
        except Exception:
            await blob_storage.delete_images(external_ids=[blob.external_id for blob in blobs])
            raise

        log_task_event(
            logger, "info", "Planting completed", order_id=task.order_id, task_id=task.task_id, images=len(blobs)
        )

        await _advance_order_after_planting(order_id=task.order_id)
        return await get_task(order_id=task.order_id, task_id=task.task_id)


async def transition_to_updating(*, order_id: str, task_id: str, wellwisher_id: str | None = None) -> Task:
    """completed -> updating."""
    with span("task_state_machine.transition_to_updating"):
        task = await get_task(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)
        validate_transition(task.status, TaskStatus.UPDATING)
        await write_transition(task=task, expected=TaskStatus.COMPLETED, data={"status": TaskStatus.UPDATING})

        log_task_event(logger, "info", "Task moved to updating", order_id=task.order_id, task_id=task.task_id)
        return await get_task(order_id=task.order_id, task_id=task.task_id)


async def mark_updating(
    *, order_id: str, task_id: str, wellwisher_id: str | None = None, now: datetime | None = None
) -> Task:
    """Worker-requested completed -> updating.

    Held to the same age guard as the escalation sweep: the task must have
    been completed at least ESCALATION_AFTER_DAYS ago.

    Raises:
        InvalidTransitionError: If the task is not completed or completed too recently
    """
    task = await get_task(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)
    validate_transition(task.status, TaskStatus.UPDATING)

    cutoff = (now or datetime.now(UTC)) - timedelta(days=constants.ESCALATION_AFTER_DAYS)
    if task.completed_at is None or task.completed_at > cutoff:
        msg = (
            f"Task {task.task_id} can move to updating {constants.ESCALATION_AFTER_DAYS} days after completion; "
            "submit a growth update instead"
        )
        raise InvalidTransitionError(msg)

    return await transition_to_updating(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)


async def apply_status_change(
    *, order_id: str, task_id: str, status: TaskStatus, wellwisher_id: str | None = None
) -> Task:
    """Apply a status change requested through ``PUT /wellwisher/tasks``.

    Completion needs planting evidence, so it is only reachable through the
    planting submission.
    """
    task = await get_task(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)
    validate_transition(task.status, status)

    if status == TaskStatus.IN_PROGRESS:
        return await start_task(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)
    if status == TaskStatus.UPDATING:
        return await mark_updating(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)

    msg = "Completing a task requires a planting submission with at least one image"
    raise InvalidInputError(msg)


async def get_planting_details(
    *, order_id: str, task_id: str, wellwisher_id: str | None = None
) -> PlantingDetails | None:
    task = await get_task(order_id=order_id, task_id=task_id, wellwisher_id=wellwisher_id)
    return task.planting_details


async def _advance_order_after_planting(*, order_id: str) -> None:
    """Best-effort order rollup after a planting: confirmed -> planted, then -> completed.

    Failures are logged and never undo the task transition.
    """
    try:
        await db_client.update_where(
            collection="orders",
            match={"id": int(order_id), "status": OrderStatus.CONFIRMED},
            data={"status": OrderStatus.PLANTED},
        )

        open_filter = " || ".join(f'status = "{status}"' for status in OPEN_TASK_STATUSES)
        open_tasks = await db_client.count_records(
            collection="tasks",
            filter_query=f'order_id = "{order_id}" && ({open_filter})',
        )
        if open_tasks:
            return

        completed = await db_client.update_where(
            collection="orders",
            match={"id": int(order_id), "status": (OrderStatus.CONFIRMED, OrderStatus.PLANTED)},
            data={"status": OrderStatus.COMPLETED},
        )
        if completed:
            logger.info("All tasks planted; order completed", extra={"order_id": order_id})
    except Exception as e:
        logger.warning("Order status rollup failed", extra={"order_id": order_id, "error": str(e)})
