"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from appstore_notifier.api.dependencies import container
from appstore_notifier.api.routes import router
from appstore_notifier.config import get_runtime_settings
from appstore_notifier.observability import get_logger, metrics, setup_logging, setup_tracing
from appstore_notifier.observability.tracing import instrument_fastapi

runtime = get_runtime_settings()

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=runtime.api_title,
        version=runtime.api_version,
        tracing_enabled=runtime.tracing_enabled,
        metrics_enabled=runtime.metrics_enabled,
    )

    yield

    logger.info("application_shutting_down")
    await container.close()
    logger.info("kv_store_closed")


app = FastAPI(
    title=runtime.api_title,
    version=runtime.api_version,
    description=runtime.api_description,
    lifespan=lifespan,
)

# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing. The webhook secret is never logged."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    # Route template, not the concrete path, so the secret stays out of logs and labels
    method = request.method
    endpoint = (
        "/api/app-store-notifications/{secret}"
        if request.url.path.startswith("/api/app-store-notifications/")
        else request.url.path
    )
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    try:
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


app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": runtime.api_title,
        "version": runtime.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format, or 404 when METRICS_ENABLED is off.
    """
    if not get_runtime_settings().metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "appstore_notifier.main:app",
        host=runtime.api_host,
        port=runtime.api_port,
        log_level=runtime.log_level.lower(),
    )
