"""Logging and observability configuration using Pydantic Logfire.

All modules use Python's standard logging library (logging.getLogger(__name__));
Logfire captures and enriches those records once configured.

Standard usage:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Message", extra={"key": "value"})

Service spans:
    with span("order_service.mark_paid"):
        ...
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="treeadopt-fulfillment",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def instrument_fastapi(app: FastAPI) -> None:
    """Add Logfire instrumentation to FastAPI application."""
    logfire.instrument_fastapi(app)
    logger = logging.getLogger(__name__)
    logger.info("FastAPI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Create a custom span for service layer functions.

    Usage:
        with span("task_state_machine.start_task"):
            # Your service logic here
            pass
    """
    return logfire.span(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (order_id, task_id, wellwisher_id, ...)
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_task_event(
    logger: logging.Logger,
    level: str,
    message: str,
    *,
    order_id: str,
    task_id: str,
    **extra: object,
) -> None:
    """Log a message about a single task with its order/task identity attached.

    Usage:
        log_task_event(logger, "info", "Task started", order_id="12", task_id="ABC12345-0")
    """
    log_with_context(logger, level, message, order_id=order_id, task_id=task_id, **extra)
