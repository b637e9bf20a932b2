"""Metrics endpoints and request timing middleware.

Counters live in ``dashboard.app.core.metrics``; this module exposes them
in Prometheus text format on ``/metrics`` and as JSON on ``/stats``.
"""

import time
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from dashboard.app.core.metrics import get_metrics_collector
from dashboard.app.middleware.auth import require_admin

router = APIRouter()

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics(admin=Depends(require_admin)) -> PlainTextResponse:
    """Prometheus scrape endpoint (admin only)."""
    content = await get_metrics_collector().get_prometheus_metrics()
    return PlainTextResponse(content=content, media_type=PROMETHEUS_CONTENT_TYPE)


@router.get("/stats")
async def dashboard_stats(admin=Depends(require_admin)) -> dict[str, Any]:
    """Request and rate limit statistics (admin only)."""
    return await get_metrics_collector().get_summary()


class MetricsMiddleware:
    """Pure ASGI middleware timing every HTTP request.

    A request that raises before a response starts is recorded as 500.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            await get_metrics_collector().record_request(
                scope.get("path", "unknown"), time.time() - started, status_code
            )
