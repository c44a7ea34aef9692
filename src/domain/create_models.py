"""Pydantic request models validated at the HTTP boundary."""

import re
from datetime import datetime
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.config import constants
from src.domain.order import OrderItem
from src.domain.task import TaskStatus
from src.domain.user import UserRole, UserType


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        msg = "Invalid email address"
        raise ValueError(msg)
    return v


class RequestModel(BaseModel):
    """Base for request bodies: unknown fields are rejected, camelCase aliases accepted."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class UserCreate(RequestModel):
    """Pydantic model for creating a user record."""

    name: str = Field(..., min_length=1, max_length=100)
    email: str
    role: UserRole = UserRole.BUYER
    user_type: UserType = Field(default=UserType.INDIVIDUAL, alias="userType")

    validate_email_address = field_validator("email")(_validate_email)


class WellwisherCreate(RequestModel):
    """Admin request to register a field worker."""

    name: str = Field(..., min_length=1, max_length=100)
    email: str

    validate_email_address = field_validator("email")(_validate_email)


class OrderCreate(RequestModel):
    """Checkout submission."""

    items: list[OrderItem] = Field(..., min_length=1)
    is_gift: bool = Field(default=False, alias="isGift")
    gift_recipient_name: str | None = Field(default=None, alias="giftRecipientName")
    gift_recipient_email: str | None = Field(default=None, alias="giftRecipientEmail")
    gift_message: str | None = Field(
        default=None, alias="giftMessage", max_length=constants.MAX_GIFT_MESSAGE_LENGTH
    )
    payment_method: str | None = Field(default=None, alias="paymentMethod")

    @model_validator(mode="after")
    def validate_gift_recipient(self) -> Self:
        """Gift orders need a recipient name and a valid recipient email."""
        if not self.is_gift:
            return self
        if not self.gift_recipient_name or not self.gift_recipient_name.strip():
            msg = "Gift orders require a recipient name"
            raise ValueError(msg)
        if not self.gift_recipient_email:
            msg = "Gift orders require a recipient email"
            raise ValueError(msg)
        self.gift_recipient_email = _validate_email(self.gift_recipient_email)
        return self


class TaskStatusUpdate(RequestModel):
    """Body of ``PUT /wellwisher/tasks``."""

    task_id: str = Field(..., alias="taskId", min_length=1)
    order_id: str = Field(..., alias="orderId", min_length=1)
    status: TaskStatus


class PlantingSubmission(RequestModel):
    """Non-file fields of a planting submission."""

    task_id: str = Field(..., alias="taskId", min_length=1)
    order_id: str = Field(..., alias="orderId", min_length=1)
    notes: str = Field(default="", max_length=constants.MAX_NOTES_LENGTH)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    altitude: float | None = None
    altitude_accuracy: float | None = Field(default=None, alias="altitudeAccuracy", ge=0)
    heading: float | None = Field(default=None, ge=0, lt=360)
    speed: float | None = Field(default=None, ge=0)
    location_source: str | None = Field(default=None, alias="locationSource", max_length=50)
    permission_state: str | None = Field(default=None, alias="permissionState", max_length=50)
    client_timestamp: datetime | None = Field(default=None, alias="clientTimestamp")

    @model_validator(mode="after")
    def validate_coordinates_paired(self) -> Self:
        """Latitude and longitude are given together or not at all."""
        if (self.lat is None) != (self.lng is None):
            msg = "Latitude and longitude must be provided together"
            raise ValueError(msg)
        return self


class GrowthUpdateSubmission(RequestModel):
    """Non-file fields of a growth-update submission."""

    task_id: str = Field(..., alias="taskId", min_length=1)
    order_id: str = Field(..., alias="orderId", min_length=1)
    notes: str = Field(default="", max_length=constants.MAX_NOTES_LENGTH)


class PaymentEvent(RequestModel):
    """Trusted, already-verified event from the payment gateway."""

    order_id: str = Field(..., alias="orderId", min_length=1)
    event: Literal["paid", "failed"]
    payment_ref: str | None = Field(default=None, alias="paymentRef")

    @model_validator(mode="after")
    def validate_paid_has_reference(self) -> Self:
        if self.event == "paid" and not self.payment_ref:
            msg = "A paid event requires a payment reference"
            raise ValueError(msg)
        return self


class AdminNotesUpdate(RequestModel):
    """Admin notes attached to an order."""

    notes: str = Field(..., max_length=constants.MAX_ADMIN_NOTES_LENGTH)
