from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dashboard.app.api.admin import router as admin_router
from dashboard.app.api.metrics import MetricsMiddleware
from dashboard.app.api.metrics import router as metrics_router
from dashboard.app.core.config import settings
from dashboard.app.core.logging import get_logger, setup_logging
from dashboard.app.core.metrics import get_metrics_collector
from dashboard.app.core.redis_client import CounterStore
from dashboard.app.exceptions import DashboardException
from dashboard.app.middleware.request_id import RequestIdMiddleware
from dashboard.app.ratelimit.limiter import SlidingWindowRateLimiter
from dashboard.app.ratelimit.middleware import RateLimitMiddleware


def create_app(store: CounterStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Optional counter store; by default one is created from
            settings when REDIS_ENABLED is true

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the counter store and build the rate limiter.

        An unreachable Redis does not block startup; the limiter fails open
        until the store recovers.
        """
        counter_store = store
        if counter_store is None and settings.redis_enabled:
            counter_store = CounterStore()

        if counter_store is not None:
            await counter_store.open()
        else:
            logger.info("Redis disabled; rate limiting will fail open")

        app.state.counter_store = counter_store
        app.state.rate_limiter = SlidingWindowRateLimiter(
            counter_store, metrics=get_metrics_collector()
        )

        logger.info(
            "Application startup complete",
            extra={
                "redis_enabled": counter_store is not None,
                "rate_limit_enabled": settings.rate_limit_enabled,
                "debug_mode": settings.debug,
            },
        )

        yield

        if counter_store is not None:
            await counter_store.close()
        app.state.rate_limiter = None

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="IoT Dashboard API",
        description="IoT monitoring dashboard API with distributed rate limiting",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(MetricsMiddleware)
    # Request ID outermost so every log line of the request carries it
    app.add_middleware(RequestIdMiddleware)

    app.include_router(metrics_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check with counter store status.

        A degraded counter store never fails requests, so it only marks the
        service as degraded.
        """
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        counter_store = getattr(request.app.state, "counter_store", None)
        if counter_store is None:
            health_status["components"]["counter_store"] = {"status": "disabled"}
        elif await counter_store.ping():
            health_status["components"]["counter_store"] = {"status": "ok"}
        else:
            health_status["status"] = "degraded"
            health_status["components"]["counter_store"] = {
                "status": "unavailable",
                "fail_open": True,
            }

        return health_status

    @app.exception_handler(DashboardException)
    async def dashboard_exception_handler(
        request: Request, exc: DashboardException
    ) -> JSONResponse:
        """Map DashboardException subclasses to their HTTP status."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; full details are logged
        server-side.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        await get_metrics_collector().record_error(type(exc).__name__)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        content = {
            "error": "internal_error",
            "message": str(exc) if settings.debug else "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
