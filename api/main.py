"""
FastAPI API Service Entry Point
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.routes import admin, bookings, payments, webhooks
from engine.container import build_engine
from engine.exceptions import (
    AuthorizationError,
    BookingConflictError,
    BookingEngineError,
    BookingValidationError,
    DuplicateMatchError,
    NotFoundError,
)
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Movecal Booking API",
    version="1.0.0",
)

# Load settings for CORS configuration
settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include webhook routers
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Include booking and ledger routers
app.include_router(bookings.router)
app.include_router(payments.router)

# Include admin router
app.include_router(admin.router)


# =========================================================================
# STARTUP / SHUTDOWN
# =========================================================================
@app.on_event("startup")
async def startup_engine():
    """
    Validate configuration, build the engine and start background workers.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config()
        app.state.engine = await build_engine(settings)
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise  # FastAPI will fail to start

    app.state.engine.start_workers()


@app.on_event("shutdown")
async def shutdown_engine():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.stop_workers()


# =========================================================================
# EXCEPTION HANDLERS
# =========================================================================
ERROR_STATUS_CODES: dict[type[BookingEngineError], int] = {
    BookingValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    BookingConflictError: 409,
    DuplicateMatchError: 409,
}


@app.exception_handler(BookingEngineError)
async def engine_exception_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    """Map engine errors to HTTP status codes with a uniform body."""
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    if status_code >= 500:
        logger.error(f"Unmapped engine error: {exc}", extra={"request_path": request.url.path})
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Exception handler for validation errors
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": exc.errors(include_url=False)},
    )


@app.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - PostgreSQL connectivity (SELECT 1 query)
    - Background workers running

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    from sqlalchemy import text

    from database.connection import get_async_session

    health_status = {
        "status": "healthy",
        "postgres": "unknown",
        "workers": "not_started",
    }
    status_code = 200

    # Check PostgreSQL connectivity
    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception:
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    engine = getattr(request.app.state, "engine", None)
    if engine is not None and engine._tasks:
        running = sum(1 for task in engine._tasks if not task.done())
        health_status["workers"] = f"{running}/{len(engine._tasks)} running"

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Movecal Booking API - Use /health for health checks"}
