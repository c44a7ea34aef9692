"""HTTP surface for field workers: task list, status changes, planting and growth updates."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from src.core.config import constants
from src.domain.create_models import GrowthUpdateSubmission, PlantingSubmission, TaskStatusUpdate
from src.domain.task import TaskStatus
from src.domain.user import UserRole
from src.interface.auth import Identity, require_role
from src.models.service_models import ImageUpload
from src.services import growth_update_service, stats_service, task_state_machine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wellwisher", tags=["wellwisher"])

WellwisherIdentity = Annotated[Identity, Depends(require_role(UserRole.WELLWISHER))]


async def read_images(files: list[UploadFile] | None) -> list[ImageUpload]:
    """Read uploaded files into memory; empty form parts are ignored."""
    images = []
    for upload in files or []:
        if not upload.filename:
            continue
        images.append(
            ImageUpload(
                filename=upload.filename,
                content_type=upload.content_type or "application/octet-stream",
                content=await upload.read(),
            )
        )
    return images


@router.get("/tasks")
async def list_tasks(
    identity: WellwisherIdentity,
    status: TaskStatus | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=constants.MAX_PAGE_SIZE)] = constants.DEFAULT_TASK_PAGE_SIZE,
    needs_growth_update: Annotated[bool, Query(alias="needsGrowthUpdate")] = False,
) -> dict[str, Any]:
    """Paged tasks for the calling worker."""
    listing = await stats_service.list_wellwisher_tasks(
        wellwisher_id=identity.user_id,
        status=status,
        needs_growth_update=needs_growth_update,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": listing.model_dump(mode="json")}


@router.put("/tasks")
async def update_task_status(body: TaskStatusUpdate, identity: WellwisherIdentity) -> dict[str, Any]:
    """Apply a task status change."""
    task = await task_state_machine.apply_status_change(
        order_id=body.order_id,
        task_id=body.task_id,
        status=body.status,
        wellwisher_id=identity.user_id,
    )
    return {"success": True, "data": task.model_dump(mode="json")}


@router.post("/planting")
async def submit_planting(
    identity: WellwisherIdentity,
    task_id: Annotated[str, Form(alias="taskId")],
    order_id: Annotated[str, Form(alias="orderId")],
    images: Annotated[list[UploadFile] | None, File()] = None,
    notes: Annotated[str, Form()] = "",
    lat: Annotated[float | None, Form()] = None,
    lng: Annotated[float | None, Form()] = None,
    accuracy: Annotated[float | None, Form()] = None,
    altitude: Annotated[float | None, Form()] = None,
    altitude_accuracy: Annotated[float | None, Form(alias="altitudeAccuracy")] = None,
    heading: Annotated[float | None, Form()] = None,
    speed: Annotated[float | None, Form()] = None,
    location_source: Annotated[str | None, Form(alias="locationSource")] = None,
    permission_state: Annotated[str | None, Form(alias="permissionState")] = None,
    client_timestamp: Annotated[str | None, Form(alias="clientTimestamp")] = None,
) -> dict[str, Any]:
    """Complete an in-progress task with planting evidence."""
    submission = PlantingSubmission(
        task_id=task_id,
        order_id=order_id,
        notes=notes,
        lat=lat,
        lng=lng,
        accuracy=accuracy,
        altitude=altitude,
        altitude_accuracy=altitude_accuracy,
        heading=heading,
        speed=speed,
        location_source=location_source,
        permission_state=permission_state,
        client_timestamp=client_timestamp,
    )
    task = await task_state_machine.complete_planting(
        submission=submission,
        images=await read_images(images),
        wellwisher_id=identity.user_id,
    )
    return {"success": True, "data": task.model_dump(mode="json")}


@router.get("/planting")
async def get_planting(
    identity: WellwisherIdentity,
    order_id: Annotated[str, Query(alias="orderId")],
    task_id: Annotated[str, Query(alias="taskId")],
) -> dict[str, Any]:
    """Planting details recorded for a task, if any."""
    details = await task_state_machine.get_planting_details(
        order_id=order_id, task_id=task_id, wellwisher_id=identity.user_id
    )
    return {"success": True, "data": details.model_dump(mode="json") if details else None}


@router.post("/growth-update")
async def submit_growth_update(
    identity: WellwisherIdentity,
    task_id: Annotated[str, Form(alias="taskId")],
    order_id: Annotated[str, Form(alias="orderId")],
    images: Annotated[list[UploadFile] | None, File()] = None,
    notes: Annotated[str, Form()] = "",
) -> dict[str, Any]:
    """Record a growth update on a planted task."""
    submission = GrowthUpdateSubmission(task_id=task_id, order_id=order_id, notes=notes)
    update = await growth_update_service.submit_growth_update(
        submission=submission,
        images=await read_images(images),
        wellwisher_id=identity.user_id,
    )
    return {"success": True, "data": update.model_dump(mode="json")}


@router.get("/stats")
async def get_stats(identity: WellwisherIdentity) -> dict[str, Any]:
    """Dashboard projection for the calling worker."""
    stats = await stats_service.get_wellwisher_stats(wellwisher_id=identity.user_id)
    return {"success": True, "data": stats.model_dump(mode="json")}
