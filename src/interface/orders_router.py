"""HTTP surface for buyers: checkout, order history and cancellation."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status

from src.core.config import constants
from src.core.errors import NotAuthorizedError
from src.domain.create_models import OrderCreate
from src.domain.order import Order
from src.domain.user import UserRole
from src.interface.auth import Identity, get_identity, require_role
from src.services import order_service, user_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

BuyerIdentity = Annotated[Identity, Depends(require_role(UserRole.BUYER, UserRole.ADMIN))]


def _ensure_can_view(order: Order, identity: Identity) -> None:
    if identity.role == UserRole.ADMIN:
        return
    if identity.role == UserRole.BUYER and order.buyer_id == identity.user_id:
        return
    if identity.role == UserRole.WELLWISHER and order.assigned_wellwisher == identity.user_id:
        return
    raise NotAuthorizedError(f"Order {order.id} is not visible to you")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(body: OrderCreate, identity: BuyerIdentity) -> dict[str, Any]:
    """Check out. A recent identical pending order is returned instead of a duplicate."""
    buyer = await user_service.get_user(user_id=identity.user_id)
    order = await order_service.create_order(buyer=buyer, order=body)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.get("")
async def list_my_orders(
    identity: BuyerIdentity,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=constants.MAX_PAGE_SIZE)] = constants.DEFAULT_ORDER_PAGE_SIZE,
) -> dict[str, Any]:
    """The caller's orders, newest first."""
    orders = await order_service.list_orders_for_buyer(buyer_id=identity.user_id, page=page, per_page=limit)
    return {"success": True, "data": [order.model_dump(mode="json") for order in orders]}


@router.get("/{order_id}")
async def get_order(order_id: str, identity: Annotated[Identity, Depends(get_identity)]) -> dict[str, Any]:
    """One order with its tasks."""
    order = await order_service.get_order(order_id=order_id)
    _ensure_can_view(order, identity)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: str, identity: BuyerIdentity) -> dict[str, Any]:
    """Cancel an order before planting begins."""
    buyer_id = None if identity.role == UserRole.ADMIN else identity.user_id
    order = await order_service.cancel_order(order_id=order_id, buyer_id=buyer_id)
    return {"success": True, "data": order.model_dump(mode="json")}
