"""Inbound payment-gateway events. Signature verification happens upstream."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from src.domain.create_models import PaymentEvent
from src.domain.user import UserRole
from src.interface.auth import Identity, require_role
from src.services import order_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/events")
async def receive_payment_event(
    body: PaymentEvent,
    _identity: Annotated[Identity, Depends(require_role(UserRole.ADMIN))],
) -> dict[str, Any]:
    """Apply a verified "paid" or "failed" event to its order."""
    logger.info("payment_event_received", extra={"order_id": body.order_id, "event": body.event})

    if body.event == "paid":
        # payment_ref presence is enforced by PaymentEvent
        order = await order_service.mark_paid(order_id=body.order_id, payment_ref=body.payment_ref or "")
    else:
        order = await order_service.mark_payment_failed(order_id=body.order_id)

    return {"success": True, "data": order.model_dump(mode="json")}
