"""Assignment balancer: spreads newly paid orders evenly across active wellwishers."""

import logging

from src.core import db_client
from src.core.logging import span
from src.domain.task import TaskStatus
from src.models.service_models import WorkerLoad
from src.services import user_service


logger = logging.getLogger(__name__)

ACTIVE_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


def choose_wellwisher(loads: list[WorkerLoad]) -> str | None:
    """Pick the worker with the fewest active tasks.

    Ties go to the earliest-registered worker, then to pool order.
    Returns None for an empty pool.
    """
    if not loads:
        return None

    _, chosen = min(
        enumerate(loads),
        key=lambda pair: (pair[1].active_tasks, pair[1].registered_at, pair[0]),
    )
    return chosen.user_id


async def get_worker_loads() -> list[WorkerLoad]:
    """Active (pending or in-progress) task count for every worker in the pool."""
    with span("assignment_service.get_worker_loads"):
        pool = await user_service.list_active_wellwishers()
        if not pool:
            return []

        status_filter = " || ".join(f'status = "{status}"' for status in ACTIVE_TASK_STATUSES)
        counts = await db_client.count_grouped(
            collection="tasks",
            group_by="wellwisher_id",
            filter_query=f"({status_filter})",
        )

        return [
            WorkerLoad(user_id=user.id, registered_at=user.created, active_tasks=counts.get(user.id, 0))
            for user in pool
        ]


async def assign() -> str | None:
    """Choose a worker for a newly paid order.

    Loads are read before the caller writes the assignment without a lock, so
    concurrent payments may briefly skew the distribution.
    """
    with span("assignment_service.assign"):
        loads = await get_worker_loads()
        chosen = choose_wellwisher(loads)

        if chosen is None:
            logger.warning("No active wellwishers available; assignment deferred")
        else:
            logger.info(
                "Selected wellwisher %s",
                chosen,
                extra={"pool_size": len(loads), "loads": {load.user_id: load.active_tasks for load in loads}},
            )
        return chosen
