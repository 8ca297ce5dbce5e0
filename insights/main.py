"""FastAPI application factory for the prediction insight service.

Run with: uvicorn insights.main:app --reload
"""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app as make_metrics_app
from starlette.middleware.gzip import GZipMiddleware

from insights.admission.controller import AdmissionController, run_periodic_sweep
from insights.admission.store import InMemoryAdmissionStore
from insights.api.insights import router as insights_router
from insights.cache.store import RedisCacheStore
from insights.common.config import get_settings
from insights.common.exceptions import AdmissionDeniedError, InsightValidationError
from insights.common.logging import configure_logging, get_logger
from insights.common.metrics import set_app_info
from insights.common.middleware import (
    PrometheusMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    request_id_var,
)
from insights.prediction.pipeline import InsightService

logger = get_logger("SYSTEM")

VERSION = "0.1.0"

# Admission reasons as exposed to HTTP clients
DENIAL_CODES = {"RATE_LIMIT": "RATE_LIMIT", "DAILY_LIMIT": "FREE_DAILY_LIMIT"}


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle: start/stop the admission sweep task."""
    settings = get_settings()
    sweep_task: asyncio.Task | None = None
    if settings.admission_sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(
            run_periodic_sweep(
                application.state.admission,
                settings.admission_sweep_interval_seconds,
            )
        )
        logger.info(
            "Admission sweep started",
            extra={"data": {"interval_s": settings.admission_sweep_interval_seconds}},
        )

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
        logger.info("Admission sweep stopped")

    store = application.state.insight_service.cache.store
    if isinstance(store, RedisCacheStore):
        await store.close()
        logger.info("Redis cache connection closed")


def create_app(
    *,
    admission: AdmissionController | None = None,
    insight_service: InsightService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        admission: Admission controller; defaults to an in-memory store
            configured from settings.
        insight_service: Insight service; defaults to one built from settings.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Prediction Insight Service",
        version=VERSION,
        description="Fuses market and news signals into calibrated probability insights",
        lifespan=lifespan,
    )

    app.state.admission = admission or AdmissionController.from_settings(
        InMemoryAdmissionStore(), settings
    )
    app.state.insight_service = insight_service or InsightService.from_settings(settings)

    # Last added = outermost = runs first on request
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ─── Exception Handlers ───

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map pydantic body errors onto the 400 field-error contract."""
        fields = [
            {
                "field": ".".join(str(part) for part in err["loc"] if part != "body") or "body",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        logger.info(
            "Request validation failed",
            extra={"data": {"path": request.url.path, "fields": fields}},
        )
        return JSONResponse(
            status_code=400,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "fields": fields,
            },
        )

    @app.exception_handler(InsightValidationError)
    async def insight_validation_handler(
        request: Request, exc: InsightValidationError
    ) -> JSONResponse:
        fields = [{"field": exc.field, "message": exc.args[0]}] if exc.field else []
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "message": exc.args[0], "fields": fields},
        )

    @app.exception_handler(AdmissionDeniedError)
    async def admission_denied_handler(
        request: Request, exc: AdmissionDeniedError
    ) -> JSONResponse:
        """Denials are 429 with a machine-readable code and Retry-After."""
        decision = exc.decision
        code = DENIAL_CODES.get(decision.reason, "RATE_LIMIT")
        retry_after = decision.retry_after or 1
        message = (
            "Daily free-tier limit reached"
            if code == "FREE_DAILY_LIMIT"
            else "Too many requests, slow down"
        )
        return JSONResponse(
            status_code=429,
            content={
                "error": "AdmissionDenied",
                "code": code,
                "message": message,
                "retryAfter": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: log traceback, return 500."""
        rid = request_id_var.get("")
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc}",
            extra={
                "data": {
                    "path": str(request.url),
                    "request_id": rid,
                    "traceback": traceback.format_exc(),
                }
            },
        )
        body: dict = {
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
        }
        if rid:
            body["request_id"] = rid
        return JSONResponse(status_code=500, content=body)

    # ─── Health ───

    @app.get("/health")
    async def health_check() -> dict:
        """Liveness probe: confirms the process is running."""
        return {"status": "ok", "version": VERSION}

    # ─── Prometheus Metrics ───

    metrics_app = make_metrics_app()
    app.mount("/metrics", metrics_app)
    set_app_info(version=VERSION, environment=settings.environment)

    # ─── Router Mounting ───

    app.include_router(insights_router, prefix="/insights", tags=["insights"])

    logger.info("App started", extra={"data": {"version": VERSION}})

    return app


app = create_app()
