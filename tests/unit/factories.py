"""Builders for users, orders and tasks in a real test database."""

from datetime import UTC, datetime, timedelta

from src.core import db_client
from src.domain.create_models import OrderCreate, PlantingSubmission, UserCreate
from src.domain.order import Order, OrderItem
from src.domain.task import TaskStatus
from src.domain.user import User, UserRole
from src.models.service_models import ImageUpload
from src.services import order_service, task_state_machine, user_service


_PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def create_buyer(name: str = "Alice Green", email: str = "alice@example.com") -> User:
    return await user_service.create_user(user=UserCreate(name=name, email=email, role=UserRole.BUYER))


async def create_wellwisher(name: str = "Bob Field", email: str = "bob@example.com") -> User:
    return await user_service.create_user(user=UserCreate(name=name, email=email, role=UserRole.WELLWISHER))


def order_items(*prices: float) -> list[OrderItem]:
    """One self-adoption item per price, each with quantity 1."""
    return [
        OrderItem(tree_id=f"tree-{index}", tree_name=f"Neem {index}", quantity=1, price=price)
        for index, price in enumerate(prices)
    ]


async def create_order(buyer: User, *prices: float) -> Order:
    return await order_service.create_order(buyer=buyer, order=OrderCreate(items=order_items(*(prices or (500,)))))


async def create_paid_order(buyer: User, *prices: float, payment_ref: str = "pay_123") -> Order:
    order = await create_order(buyer, *prices)
    return await order_service.mark_paid(order_id=order.id, payment_ref=payment_ref)


def image(name: str = "tree.png", *, content_type: str = "image/png", content: bytes = _PNG_BYTES) -> ImageUpload:
    return ImageUpload(filename=name, content_type=content_type, content=content)


def images(count: int) -> list[ImageUpload]:
    return [image(f"tree-{n}.png") for n in range(count)]


async def plant_task(order: Order, *, index: int = 0, wellwisher_id: str | None = None):
    """Drive a pending task through start and planting."""
    task = order.tasks[index]
    await task_state_machine.start_task(order_id=order.id, task_id=task.task_id, wellwisher_id=wellwisher_id)
    return await task_state_machine.complete_planting(
        submission=PlantingSubmission(order_id=order.id, task_id=task.task_id, notes="Planted by the river"),
        images=images(2),
        wellwisher_id=wellwisher_id,
    )


async def backdate_completion(*, order_id: str, task_id: str, days_ago: float) -> datetime:
    """Rewrite a planted task's completion time as if it happened ``days_ago`` days back."""
    completed_at = datetime.now(UTC) - timedelta(days=days_ago)
    task = await task_state_machine.get_task(order_id=order_id, task_id=task_id)
    details = task.planting_details.model_copy(update={"completed_at": completed_at, "planted_at": completed_at})
    await db_client.update_where(
        collection="tasks",
        match={"order_id": int(order_id), "task_id": task_id, "status": (TaskStatus.COMPLETED, TaskStatus.UPDATING)},
        data={
            "completed_at": completed_at,
            "planting_details": details.model_dump(mode="json"),
            "next_growth_update_due": completed_at + timedelta(days=30),
        },
    )
    return completed_at
