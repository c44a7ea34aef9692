from src.services import (
    assignment_service,
    escalation_service,
    growth_update_service,
    order_service,
    stats_service,
    task_state_machine,
    user_service,
)


__all__ = [
    "assignment_service",
    "escalation_service",
    "growth_update_service",
    "order_service",
    "stats_service",
    "task_state_machine",
    "user_service",
]
