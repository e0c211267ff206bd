"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from gem_ledger.api.admin_routes import router as admin_router
from gem_ledger.api.routes import router
from gem_ledger.config import settings
from gem_ledger.db.migration_runner import run_migrations
from gem_ledger.db.session import close_engines
from gem_ledger.exceptions import GemLedgerError
from gem_ledger.models.api import ErrorResponse
from gem_ledger.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from gem_ledger.observability.tracing import instrument_fastapi
from gem_ledger.services.points_ledger import close_points_ledger

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)

# Error kind -> HTTP status. Kinds not listed are internal errors (500).
ERROR_STATUS_CODES: dict[str, int] = {
    "InvalidAmount": 400,
    "InsufficientPoints": 400,
    "InvalidCustomValue": 400,
    "InvalidCursor": 400,
    "Unauthenticated": 401,
    "InsufficientBalance": 402,
    "Forbidden": 403,
    "UnknownItem": 404,
    "UnknownOffer": 404,
    "NotActivated": 404,
    "PointsLedgerUnavailable": 502,
    "JustificationUnavailable": 503,
}


def status_code_for(error: GemLedgerError) -> int:
    return ERROR_STATUS_CODES.get(error.kind, 500)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    yield

    logger.info("application_shutting_down")
    await close_points_ledger()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(GemLedgerError)
async def gem_ledger_exception_handler(request: Request, exc: GemLedgerError) -> JSONResponse:
    """Map domain errors to their HTTP status with a stable error kind."""
    status_code = status_code_for(exc)

    if status_code >= 500 and exc.kind not in ERROR_STATUS_CODES:
        # Internal failures: log everything, expose nothing
        metrics.record_error(type(exc).__name__, request.url.path)
        logger.error(
            "internal_error",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        body = ErrorResponse(error=exc.kind, detail="Internal error")
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            method=request.method,
            error=exc.kind,
            status_code=status_code,
        )
        body = ErrorResponse(error=exc.kind, detail=str(exc))

    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Log detailed validation errors for debugging."""
    errors = exc.errors()

    # ctx may contain non-serializable objects
    sanitized_errors = []
    for error in errors:
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "detail": sanitized_errors},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)


class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Trust X-Forwarded-Proto from the reverse proxy."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto
        return await call_next(request)


app.add_middleware(ProxyHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        request_id=request_id,
    )

    endpoint = request.url.path
    method = request.method
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
        duration = time.time() - start_time

        metrics.record_http_request(endpoint, method, response.status_code, duration)

        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
            request_id=request_id,
        )

        return response
    except Exception as e:
        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")

        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


app.include_router(router)  # User-facing gem API
app.include_router(admin_router)  # Admin API (X-API-Key)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return PlainTextResponse(generate_latest())


def main() -> None:
    import uvicorn

    uvicorn.run(
        "gem_ledger.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
