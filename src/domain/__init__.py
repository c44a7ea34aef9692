"""Domain models and DTOs."""

from src.domain.create_models import (
    AdminNotesUpdate,
    GrowthUpdateSubmission,
    OrderCreate,
    PaymentEvent,
    PlantingSubmission,
    TaskStatusUpdate,
    UserCreate,
    WellwisherCreate,
)
from src.domain.order import AdoptionType, Order, OrderItem, OrderStatus, PaymentStatus
from src.domain.task import (
    GeoPoint,
    GrowthUpdate,
    LocationMeta,
    PlantingDetails,
    Task,
    TaskImage,
    TaskPriority,
    TaskStatus,
)
from src.domain.user import User, UserRole, UserStatus, UserType


__all__ = [
    "AdminNotesUpdate",
    "AdoptionType",
    "GeoPoint",
    "GrowthUpdate",
    "GrowthUpdateSubmission",
    "LocationMeta",
    "Order",
    "OrderCreate",
    "OrderItem",
    "OrderStatus",
    "PaymentEvent",
    "PaymentStatus",
    "PlantingDetails",
    "PlantingSubmission",
    "Task",
    "TaskImage",
    "TaskPriority",
    "TaskStatus",
    "TaskStatusUpdate",
    "User",
    "UserCreate",
    "UserRole",
    "UserStatus",
    "UserType",
    "WellwisherCreate",
]
