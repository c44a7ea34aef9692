"""treeadopt - Order fulfillment and wellwisher task lifecycle service."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.core import scheduler_tracker
from src.core.config import constants, settings
from src.core.db_client import close_connection, init_db
from src.core.errors import ErrorCode, FulfillmentError, classify_error_with_response
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.scheduler import JOB_NAMES, start_scheduler, stop_scheduler
from src.interface.admin_router import router as admin_router
from src.interface.orders_router import router as orders_router
from src.interface.payments_router import router as payments_router
from src.interface.wellwisher_router import router as wellwisher_router


logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev-secret-key-change-me"  # noqa: S105


async def check_blob_storage_connectivity() -> None:
    """Check blob storage is reachable. Uploads fail per-request if it is not, so this only warns."""
    try:
        async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
            response = await client.get(f"{settings.blob_storage_url}/health")
        if response.is_success:
            logger.info("startup_validation", extra={"service": "blob_storage", "status": "ok"})
        else:
            logger.warning(
                "startup_validation",
                extra={"service": "blob_storage", "status": "unavailable", "status_code": response.status_code},
            )
    except httpx.HTTPError as e:
        logger.warning("startup_validation", extra={"service": "blob_storage", "status": "unavailable", "error": str(e)})


async def validate_startup_configuration() -> None:
    """Validate required credentials and external service connectivity.

    Fails fast in production when the token signing secret is missing or left at its default.
    """
    logger.info("startup_validation_begin")

    try:
        secret = settings.require_credential("secret_key", "Identity token signing")
        if settings.is_production and secret == DEV_SECRET_KEY:
            raise ValueError("SECRET_KEY must be changed from its development default in production")
        logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})

        await check_blob_storage_connectivity()

        logger.info("startup_validation_complete", extra={"status": "ok"})

    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so validation logs are captured
    configure_logfire()

    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    start_scheduler()
    yield
    stop_scheduler()
    await close_connection()


app = FastAPI(
    title="treeadopt",
    description="Order fulfillment and wellwisher task lifecycle engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(orders_router)
app.include_router(wellwisher_router)
app.include_router(admin_router)
app.include_router(payments_router)


def _error_body(*, code: str, message: str, suggestion: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message, "suggestion": suggestion}}


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    """Render domain errors with their status code and recovery suggestion."""
    logger.info(
        "request_failed",
        extra={"path": request.url.path, "code": exc.code, "status_code": exc.status_code, "error": exc.message},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(code=exc.code, message=exc.message, suggestion=exc.suggestion),
    )


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError | ValidationError) -> JSONResponse:
    """Malformed request bodies and fields are a 400, not a 422."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.info("request_validation_failed", extra={"path": request.url.path, "error": details})
    return JSONResponse(
        status_code=400,
        content=_error_body(
            code=ErrorCode.ERR_VALIDATION,
            message=details or "Invalid request",
            suggestion="Check the submitted fields and try again.",
        ),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler; internals are logged, not returned."""
    logger.exception("unhandled_error", extra={"path": request.url.path})
    response = classify_error_with_response(exc)
    return JSONResponse(
        status_code=500,
        content=_error_body(code=response.code, message=response.message, suggestion=response.suggestion),
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health check endpoint with job statuses."""
    tracker = scheduler_tracker.job_tracker

    job_statuses = {}
    for job_name in JOB_NAMES:
        job_statuses[job_name] = await tracker.get_job_status(job_name)

    dlq = tracker.get_dead_letter_queue()

    has_failures = any(status["consecutive_failures"] > 0 for status in job_statuses.values())

    overall_status = "degraded" if has_failures else "healthy"
    if len(dlq) > 0:
        overall_status = "critical"

    return JSONResponse(
        content={
            "status": overall_status,
            "jobs": job_statuses,
            "dead_letter_queue_size": len(dlq),
            "dead_letter_queue": dlq,
        },
        status_code=200 if overall_status == "healthy" else 503,
    )
