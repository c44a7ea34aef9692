"""Order domain models and enums."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from src.domain.task import Task, TaskStatus
from src.domain.user import UserType


class PaymentStatus(StrEnum):
    """Payment state reported by the gateway."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(StrEnum):
    """Fulfillment state of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PLANTED = "planted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AdoptionType(StrEnum):
    """Whether an item is adopted for the buyer or as a gift."""

    SELF = "self"
    GIFT = "gift"


class OrderItem(BaseModel):
    """Snapshot of one purchased tree line; immutable after order creation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tree_id: str = Field(..., alias="treeId", min_length=1)
    tree_name: str = Field(..., alias="treeName", min_length=1)
    tree_image: str = Field(default="", alias="treeImage")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    oxygen_kg: float = Field(default=0, alias="oxygenKg", ge=0)
    adoption_type: AdoptionType = Field(default=AdoptionType.SELF, alias="adoptionType")
    recipient_name: str | None = Field(default=None, alias="recipientName")
    recipient_email: str | None = Field(default=None, alias="recipientEmail")

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class Order(BaseModel):
    """Order data transfer object, with its tasks when loaded."""

    id: str
    order_code: str
    buyer_id: str
    buyer_email: str
    buyer_name: str
    buyer_type: UserType = UserType.INDIVIDUAL
    items: list[OrderItem]
    total_amount: float
    is_gift: bool = False
    gift_recipient_name: str | None = None
    gift_recipient_email: str | None = None
    gift_message: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    payment_method: str | None = None
    payment_ref: str | None = None
    paid_at: datetime | None = None
    assigned_wellwisher: str | None = None
    admin_notes: str = ""
    created: datetime
    updated: datetime
    tasks: list[Task] = Field(default_factory=list)

    @property
    def is_cancellable(self) -> bool:
        """True while no task has left pending and the order is not already closed."""
        if self.status in (OrderStatus.CANCELLED, OrderStatus.COMPLETED):
            return False
        return all(task.status == TaskStatus.PENDING for task in self.tasks)
