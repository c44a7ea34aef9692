"""Daily sweeps over planted tasks: 90-day escalation and growth-update due checks."""

import logging
from datetime import UTC, datetime, timedelta

from src.core import db_client
from src.core.config import constants
from src.core.errors import ConflictError
from src.core.logging import log_task_event, span
from src.domain.task import Task, TaskStatus
from src.models.service_models import GrowthUpdateDue, SweepResult
from src.services import growth_update_service, task_state_machine


logger = logging.getLogger(__name__)


async def _escalation_candidates(*, cutoff: datetime) -> list[Task]:
    """Collect every candidate before writing, since escalated rows leave the filter."""
    candidates: list[Task] = []
    page = 1
    while True:
        records = await db_client.list_records(
            collection="tasks",
            filter_query=f'status = "{TaskStatus.COMPLETED}" && completed_at <= "{cutoff.isoformat()}"',
            sort="+completed_at,+id",
            page=page,
            per_page=constants.MAX_PAGE_SIZE,
        )
        candidates.extend(Task(**record) for record in records)
        if len(records) < constants.MAX_PAGE_SIZE:
            return candidates
        page += 1


async def run_escalation_sweep(*, now: datetime | None = None) -> SweepResult:
    """Move tasks completed at least 90 days ago into ``updating``.

    Each write is conditioned on the task still being ``completed``, so repeated
    or overlapping runs never double-transition. A failure on one task is
    logged and counted; the sweep carries on with the rest.
    """
    with span("escalation_service.run_escalation_sweep"):
        run_at = now or datetime.now(UTC)
        cutoff = run_at - timedelta(days=constants.ESCALATION_AFTER_DAYS)
        candidates = await _escalation_candidates(cutoff=cutoff)
        result = SweepResult(scanned=len(candidates))

        for task in candidates:
            try:
                await task_state_machine.write_transition(
                    task=task, expected=TaskStatus.COMPLETED, data={"status": TaskStatus.UPDATING}
                )
            except ConflictError:
                result.skipped += 1
                continue
            except Exception as e:
                result.failed += 1
                log_task_event(
                    logger, "error", "Escalation failed", order_id=task.order_id, task_id=task.task_id, error=str(e)
                )
                continue

            result.escalated += 1
            log_task_event(
                logger,
                "info",
                "Task escalated to updating",
                order_id=task.order_id,
                task_id=task.task_id,
                completed_at=task.completed_at.isoformat() if task.completed_at else None,
            )

        logger.info(
            "Escalation sweep finished: %d scanned, %d escalated, %d skipped, %d failed",
            result.scanned,
            result.escalated,
            result.skipped,
            result.failed,
        )
        return result


async def log_growth_updates_due() -> list[GrowthUpdateDue]:
    """Log every planted task whose growth update is due. Delivery is handled elsewhere."""
    with span("escalation_service.log_growth_updates_due"):
        due: list[GrowthUpdateDue] = []
        page = 1
        while True:
            tasks = await growth_update_service.list_tasks_needing_growth_update(page=page)
            for task in tasks:
                if task.next_growth_update_due is None:
                    continue
                due.append(
                    GrowthUpdateDue(
                        order_id=task.order_id,
                        task_id=task.task_id,
                        wellwisher_id=task.wellwisher_id,
                        next_growth_update_due=task.next_growth_update_due,
                    )
                )
                log_task_event(
                    logger,
                    "info",
                    "Growth update due",
                    order_id=task.order_id,
                    task_id=task.task_id,
                    wellwisher_id=task.wellwisher_id,
                    due=task.next_growth_update_due.isoformat(),
                )
            if len(tasks) < constants.MAX_PAGE_SIZE:
                break
            page += 1

        logger.info("%d growth updates due", len(due))
        return due
