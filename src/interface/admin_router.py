"""Admin API: order notes, worker registration and assignment retry."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from src.domain.create_models import AdminNotesUpdate, UserCreate, WellwisherCreate
from src.domain.user import UserRole
from src.interface.auth import Identity, require_role
from src.services import order_service, user_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

AdminIdentity = Annotated[Identity, Depends(require_role(UserRole.ADMIN))]


@router.put("/orders/{order_id}/notes")
async def update_order_notes(order_id: str, body: AdminNotesUpdate, identity: AdminIdentity) -> dict[str, Any]:
    """Replace the admin notes on an order."""
    order = await order_service.set_admin_notes(order_id=order_id, notes=body.notes)
    logger.info("admin_notes_updated", extra={"order_id": order_id, "admin_id": identity.user_id})
    return {"success": True, "data": order.model_dump(mode="json")}


@router.get("/orders/by-code/{order_code}")
async def get_order_by_code(order_code: str, _identity: AdminIdentity) -> dict[str, Any]:
    """Look up an order by its human-readable code."""
    order = await order_service.get_order_by_code(order_code=order_code)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/wellwishers", status_code=status.HTTP_201_CREATED)
async def register_wellwisher(body: WellwisherCreate, identity: AdminIdentity) -> dict[str, Any]:
    """Add a field worker to the assignment pool."""
    user = await user_service.create_user(
        user=UserCreate(name=body.name, email=body.email, role=UserRole.WELLWISHER)
    )
    logger.info("wellwisher_registered", extra={"user_id": user.id, "admin_id": identity.user_id})
    return {"success": True, "data": user.model_dump(mode="json")}


@router.post("/orders/retry-assignment")
async def retry_assignment(identity: AdminIdentity) -> dict[str, Any]:
    """Assign workers to paid orders that are still unassigned."""
    result = await order_service.retry_unassigned_orders()
    logger.info("assignment_retry_triggered", extra={"admin_id": identity.user_id, **result.model_dump()})
    return {"success": True, "data": result.model_dump()}
