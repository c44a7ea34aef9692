"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from src.domain.task import Task


class WorkerLoad(BaseModel):
    """Active-task count for one worker in the assignment pool."""

    user_id: str
    registered_at: datetime
    active_tasks: int


class SweepResult(BaseModel):
    """Outcome of one escalation sweep run."""

    scanned: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0


class GrowthUpdateDue(BaseModel):
    """Task whose next growth update is due."""

    order_id: str
    task_id: str
    wellwisher_id: str | None
    next_growth_update_due: datetime


class ActivityEntry(BaseModel):
    """One line in a worker's recent-activity feed."""

    type: Literal["completed", "planting", "growth_update", "scheduled"]
    order_id: str
    task_id: str
    title: str
    timestamp: datetime
    time_ago: str


class WellwisherStats(BaseModel):
    """Dashboard projection for one worker."""

    upcoming_tasks: int
    ongoing_tasks: int
    completed_tasks: int
    updating_tasks: int
    needs_growth_update: int
    trees_helped: int
    recent_activity: list[ActivityEntry] = Field(default_factory=list)


class Pagination(BaseModel):
    """Page metadata for list responses."""

    current_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool


class TaskListing(BaseModel):
    """A page of a worker's tasks."""

    tasks: list[Task]
    pagination: Pagination


class ImageUpload(BaseModel):
    """Image file received from a field worker, read into memory."""

    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class UploadedBlob(BaseModel):
    """Reference returned by blob storage after an upload."""

    url: str
    external_id: str


class RetryAssignmentResult(BaseModel):
    """Outcome of re-balancing paid orders that have no worker."""

    scanned: int = 0
    assigned: int = 0
    deferred: int = 0
