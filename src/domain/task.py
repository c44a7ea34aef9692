"""Wellwisher task domain models and enums."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    """Field task lifecycle state; only ever moves forward."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UPDATING = "updating"


class TaskPriority(StrEnum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GeoPoint(BaseModel):
    """Planting location."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LocationMeta(BaseModel):
    """Device-reported metadata captured alongside the geo point."""

    accuracy: float | None = None
    altitude: float | None = None
    altitude_accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None
    source: str | None = None
    permission_state: str | None = None
    client_timestamp: datetime | None = None


class TaskImage(BaseModel):
    """Uploaded image reference."""

    url: str
    external_id: str
    caption: str = ""
    uploaded_at: datetime


class PlantingDetails(BaseModel):
    """Evidence submitted when a task is planted."""

    planted_at: datetime
    completed_at: datetime
    location: GeoPoint | None = None
    location_meta: LocationMeta | None = None
    images: list[TaskImage] = Field(..., min_length=1, max_length=5)
    notes: str = ""


class GrowthUpdate(BaseModel):
    """One entry of a task's append-only growth-update log."""

    update_id: str
    uploaded_at: datetime
    images: list[TaskImage] = Field(..., min_length=1, max_length=5)
    notes: str = ""
    days_since_planting: int


class Task(BaseModel):
    """Field task data transfer object."""

    id: str = Field(..., description="Row ID")
    order_id: str = Field(..., description="Owning order ID")
    task_id: str = Field(..., description="Task ID, unique within its order")
    wellwisher_id: str | None = Field(default=None, description="Worker the owning order is assigned to")
    item_index: int = Field(..., description="Index of the order item this task plants")
    title: str
    description: str
    scheduled_date: datetime
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    location: str
    tree_quantity: int = Field(default=1, ge=1)
    planting_details: PlantingDetails | None = None
    completed_at: datetime | None = None
    next_growth_update_due: datetime | None = None
    growth_updates: list[GrowthUpdate] = Field(default_factory=list)
    created: datetime
    updated: datetime
