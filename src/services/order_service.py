"""Order store: checkout, payment events, cancellation and task materialization."""

import hashlib
import json
import logging
import re
import secrets
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
from src.core.logging import span
from src.domain.create_models import OrderCreate
from src.domain.order import AdoptionType, Order, OrderItem, OrderStatus, PaymentStatus
from src.domain.task import Task, TaskPriority, TaskStatus
from src.domain.user import User
from src.models.service_models import RetryAssignmentResult
from src.services import assignment_service


logger = logging.getLogger(__name__)

ORDER_CODE_PREFIX_LENGTH = 3
ORDER_CODE_DIGITS = 5
MAX_ORDER_CODE_ATTEMPTS = 5


def calculate_total(items: list[OrderItem]) -> float:
    """Sum of price times quantity over all items."""
    return round(sum(item.line_total for item in items), 2)


def items_signature(items: list[OrderItem]) -> str:
    """Stable fingerprint of an item set, used for duplicate-submission detection."""
    key = sorted((item.tree_id, item.quantity, str(item.adoption_type)) for item in items)
    return hashlib.sha256(json.dumps(key).encode()).hexdigest()


def generate_order_code(buyer_name: str) -> str:
    """Short human-readable code: three letters from the buyer's name plus five digits."""
    letters = re.sub(r"[^A-Za-z]", "", buyer_name).upper()[:ORDER_CODE_PREFIX_LENGTH]
    prefix = letters.ljust(ORDER_CODE_PREFIX_LENGTH, "X")
    digits = "".join(secrets.choice("0123456789") for _ in range(ORDER_CODE_DIGITS))
    return f"{prefix}{digits}"


def _task_description(item: OrderItem, order: Order) -> str:
    noun = "tree" if item.quantity == 1 else "trees"
    description = f"Plant {item.quantity} {item.tree_name} {noun} and provide ongoing care."
    if order.is_gift and order.gift_message:
        description += f' Gift message: "{order.gift_message}"'
    return description


async def _unique_order_code(buyer_name: str) -> str:
    for _ in range(MAX_ORDER_CODE_ATTEMPTS):
        code = generate_order_code(buyer_name)
        existing = await db_client.get_first_record(collection="orders", filter_query=f'order_code = "{code}"')
        if existing is None:
            return code
    msg = "Could not allocate a unique order code"
    raise ConflictError(msg)


async def _load_tasks(order_id: str) -> list[Task]:
    records = await db_client.list_records(
        collection="tasks",
        filter_query=f'order_id = "{sanitize_param(order_id)}"',
        sort="+item_index",
        per_page=constants.MAX_PAGE_SIZE,
    )
    return [Task(**record) for record in records]


async def _to_order(record: dict[str, Any], *, with_tasks: bool = True) -> Order:
    order = Order(**record)
    if with_tasks:
        order.tasks = await _load_tasks(order.id)
    return order


async def get_order(*, order_id: str, with_tasks: bool = True) -> Order:
    """Fetch an order and its tasks.

    Raises:
        NotFoundError: If the order does not exist
    """
    try:
        record = await db_client.get_record(collection="orders", record_id=order_id)
    except db_client.RecordNotFoundError as e:
        raise NotFoundError(f"Order {order_id} not found", code=ErrorCode.ERR_ORDER_NOT_FOUND) from e
    return await _to_order(record, with_tasks=with_tasks)


async def get_order_by_code(*, order_code: str) -> Order:
    """Fetch an order by its human-readable code."""
    record = await db_client.get_first_record(
        collection="orders",
        filter_query=f'order_code = "{sanitize_param(order_code.upper())}"',
    )
    if record is None:
        raise NotFoundError(f"Order {order_code} not found", code=ErrorCode.ERR_ORDER_NOT_FOUND)
    return await _to_order(record)


async def list_orders_for_buyer(*, buyer_id: str, page: int = 1, per_page: int | None = None) -> list[Order]:
    """A buyer's orders, newest first, without their tasks."""
    records = await db_client.list_records(
        collection="orders",
        filter_query=f'buyer_id = "{sanitize_param(buyer_id)}"',
        sort="-created,-id",
        page=page,
        per_page=min(per_page or constants.DEFAULT_ORDER_PAGE_SIZE, constants.MAX_PAGE_SIZE),
    )
    return [Order(**record) for record in records]


async def _find_recent_duplicate(*, buyer_id: str, signature: str, total: float, now: datetime) -> dict | None:
    cutoff = now - timedelta(minutes=constants.DUPLICATE_ORDER_WINDOW_MINUTES)
    return await db_client.get_first_record(
        collection="orders",
        filter_query=(
            f'buyer_id = "{sanitize_param(buyer_id)}" && items_signature = "{signature}" && '
            f'total_amount = "{total}" && payment_status = "{PaymentStatus.PENDING}" && '
            f'status = "{OrderStatus.PENDING}" && created >= "{cutoff.isoformat()}"'
        ),
        sort="-created",
    )


async def create_order(*, buyer: User, order: OrderCreate) -> Order:
    """Create a pending order at checkout.

    A payment-pending order from the same buyer with the same items and total,
    created within the duplicate window, is returned instead of a new one.
    """
    with span("order_service.create_order"):
        now = datetime.now(UTC)
        total = calculate_total(order.items)
        signature = items_signature(order.items)

        duplicate = await _find_recent_duplicate(buyer_id=buyer.id, signature=signature, total=total, now=now)
        if duplicate is not None:
            logger.info(
                "Returning recent duplicate order",
                extra={"order_id": duplicate["id"], "buyer_id": buyer.id},
            )
            return await _to_order(duplicate)

        gift_items = [item for item in order.items if item.adoption_type == AdoptionType.GIFT]
        if not order.is_gift and any(not (item.recipient_name and item.recipient_email) for item in gift_items):
            msg = "Gift items require a recipient name and email"
            raise InvalidInputError(msg)
        is_gift = order.is_gift or bool(gift_items)

        record = await db_client.create_record(
            collection="orders",
            data={
                "order_code": await _unique_order_code(buyer.name),
                "buyer_id": int(buyer.id),
                "buyer_email": buyer.email,
                "buyer_name": buyer.name,
                "buyer_type": buyer.user_type,
                "items": [item.model_dump(mode="json") for item in order.items],
                "items_signature": signature,
                "total_amount": total,
                "is_gift": is_gift,
                "gift_recipient_name": order.gift_recipient_name,
                "gift_recipient_email": order.gift_recipient_email,
                "gift_message": order.gift_message,
                "payment_status": PaymentStatus.PENDING,
                "status": OrderStatus.PENDING,
                "payment_method": order.payment_method,
            },
        )

        logger.info(
            "Created order %s",
            record["order_code"],
            extra={"order_id": record["id"], "buyer_id": buyer.id, "total_amount": total},
        )
        return await _to_order(record)


async def _materialize_tasks(*, order: Order, wellwisher_id: str, now: datetime) -> int:
    """Attach the worker and create one pending task per item, staggered a day apart.

    Must run inside ``db_client.transaction()``. Returns the number of tasks
    created; zero when another writer already assigned the order.
    """
    claimed = await db_client.update_where(
        collection="orders",
        match={"id": int(order.id), "assigned_wellwisher": None},
        data={"assigned_wellwisher": int(wellwisher_id)},
    )
    if claimed == 0:
        return 0

    for index, item in enumerate(order.items):
        await db_client.create_record(
            collection="tasks",
            data={
                "order_id": int(order.id),
                "task_id": f"{order.order_code}-{index}",
                "wellwisher_id": int(wellwisher_id),
                "item_index": index,
                "title": f"Plant and care for {item.tree_name}",
                "description": _task_description(item, order),
                "scheduled_date": now + timedelta(days=index + 1),
                "priority": TaskPriority.MEDIUM,
                "status": TaskStatus.PENDING,
                "location": constants.DEFAULT_TASK_LOCATION,
                "tree_quantity": item.quantity,
            },
        )
    return len(order.items)


async def mark_paid(*, order_id: str, payment_ref: str) -> Order:
    """Apply the gateway's "order paid" event.

    Idempotent: an already-paid order is returned unchanged. On first payment
    the order is confirmed, a worker is chosen and tasks are materialized. With
    an empty worker pool the order stays unassigned for the retry job.
    """
    with span("order_service.mark_paid"):
        order = await get_order(order_id=order_id, with_tasks=False)

        if order.payment_status == PaymentStatus.PAID:
            logger.info("Order already paid; ignoring repeat event", extra={"order_id": order.id})
            return await get_order(order_id=order.id)
        if order.payment_status != PaymentStatus.PENDING or order.status != OrderStatus.PENDING:
            msg = f"Cannot mark order {order.id} paid: payment {order.payment_status}, status {order.status}"
            raise InvalidTransitionError(msg)

        wellwisher_id = order.assigned_wellwisher or await assignment_service.assign()
        now = datetime.now(UTC)

        async with db_client.transaction():
            paid = await db_client.update_where(
                collection="orders",
                match={"id": int(order.id), "payment_status": PaymentStatus.PENDING, "status": OrderStatus.PENDING},
                data={
                    "payment_status": PaymentStatus.PAID,
                    "status": OrderStatus.CONFIRMED,
                    "payment_ref": payment_ref,
                    "paid_at": now,
                },
            )
            created = 0
            if paid and wellwisher_id:
                created = await _materialize_tasks(order=order, wellwisher_id=wellwisher_id, now=now)

        if not paid:
            current = await get_order(order_id=order.id)
            if current.payment_status == PaymentStatus.PAID:
                return current
            msg = f"Order {order.id} changed while applying payment"
            raise ConflictError(msg)

        logger.info(
            "Order %s paid",
            order.order_code,
            extra={"order_id": order.id, "wellwisher_id": wellwisher_id, "tasks_created": created},
        )
        return await get_order(order_id=order.id)


async def mark_payment_failed(*, order_id: str) -> Order:
    """Apply the gateway's "payment failed" event; ignored once the order is paid."""
    with span("order_service.mark_payment_failed"):
        order = await get_order(order_id=order_id, with_tasks=False)
        if order.payment_status != PaymentStatus.PENDING:
            logger.warning(
                "Ignoring payment failure for order in payment state %s",
                order.payment_status,
                extra={"order_id": order.id},
            )
            return await get_order(order_id=order.id)

        changed = await db_client.update_where(
            collection="orders",
            match={"id": int(order.id), "payment_status": PaymentStatus.PENDING},
            data={"payment_status": PaymentStatus.FAILED, "status": OrderStatus.CANCELLED},
        )
        if not changed:
            msg = f"Order {order.id} changed while applying payment failure"
            raise ConflictError(msg)

        logger.info("Payment failed; order cancelled", extra={"order_id": order.id})
        return await get_order(order_id=order.id)


async def cancel_order(*, order_id: str, buyer_id: str | None = None) -> Order:
    """Cancel an order while none of its tasks has left pending.

    When ``buyer_id`` is given the order must belong to that buyer. Pending
    tasks are removed with the cancellation.
    """
    with span("order_service.cancel_order"):
        order = await get_order(order_id=order_id)

        if buyer_id is not None and order.buyer_id != buyer_id:
            raise NotAuthorizedError(f"Order {order.id} does not belong to this buyer")
        if order.status == OrderStatus.CANCELLED:
            return order
        if not order.is_cancellable:
            raise InvalidInputError(
                f"Order {order.id} can no longer be cancelled", code=ErrorCode.ERR_ORDER_NOT_CANCELLABLE
            )

        async with db_client.transaction():
            changed = await db_client.update_where(
                collection="orders",
                match={"id": int(order.id), "status": order.status},
                data={"status": OrderStatus.CANCELLED},
            )
            if not changed:
                raise ConflictError(f"Order {order.id} changed while cancelling")

            started = await db_client.count_records(
                collection="tasks",
                filter_query=f'order_id = "{order.id}" && status != "{TaskStatus.PENDING}"',
            )
            if started:
                raise InvalidInputError(
                    f"Order {order.id} can no longer be cancelled", code=ErrorCode.ERR_ORDER_NOT_CANCELLABLE
                )
            await db_client.delete_where(collection="tasks", match={"order_id": int(order.id)})

        logger.info("Cancelled order", extra={"order_id": order.id, "buyer_id": buyer_id})
        return await get_order(order_id=order.id)


async def set_admin_notes(*, order_id: str, notes: str) -> Order:
    """Replace the admin notes on an order."""
    if len(notes) > constants.MAX_ADMIN_NOTES_LENGTH:
        raise InvalidInputError(f"Admin notes exceed {constants.MAX_ADMIN_NOTES_LENGTH} characters")
    try:
        await db_client.update_record(collection="orders", record_id=order_id, data={"admin_notes": notes})
    except db_client.RecordNotFoundError as e:
        raise NotFoundError(f"Order {order_id} not found", code=ErrorCode.ERR_ORDER_NOT_FOUND) from e
    return await get_order(order_id=order_id)


async def retry_unassigned_orders() -> RetryAssignmentResult:
    """Assign workers to paid orders left unassigned by an empty pool."""
    with span("order_service.retry_unassigned_orders"):
        records = await db_client.list_records(
            collection="orders",
            filter_query=(
                f'payment_status = "{PaymentStatus.PAID}" && assigned_wellwisher = null && '
                f'status != "{OrderStatus.CANCELLED}"'
            ),
            sort="+created",
            per_page=constants.MAX_PAGE_SIZE,
        )
        result = RetryAssignmentResult(scanned=len(records))

        for index, record in enumerate(records):
            order = Order(**record)
            wellwisher_id = await assignment_service.assign()
            if wellwisher_id is None:
                # This order and everything after it wait for the next run
                result.deferred = len(records) - index
                break

            async with db_client.transaction():
                created = await _materialize_tasks(order=order, wellwisher_id=wellwisher_id, now=datetime.now(UTC))
            if created:
                result.assigned += 1

        logger.info(
            "Retried unassigned orders: %d assigned, %d deferred",
            result.assigned,
            result.deferred,
            extra={"scanned": result.scanned},
        )
        return result
