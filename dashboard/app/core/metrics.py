"""In-process request and rate limit counters.

Each worker process keeps its own counters; aggregation across workers is
left to the Prometheus scraper. The HTTP endpoints exposing them live in
``dashboard.app.api.metrics``.
"""

import asyncio
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass
class EndpointStats:
    """Accumulated traffic for one request path."""

    count: int = 0
    total_duration: float = 0.0
    errors: int = 0

    def observe(self, duration: float, status_code: int) -> None:
        self.count += 1
        self.total_duration += duration
        if status_code >= 400:
            self.errors += 1

    @property
    def avg_duration_ms(self) -> float:
        return round(self.total_duration / self.count * 1000, 2) if self.count else 0.0


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _metric_block(
    name: str,
    help_text: str,
    metric_type: str,
    samples: Iterable[Tuple[Dict[str, str], Any]],
) -> List[str]:
    """Render one metric family in Prometheus exposition format."""
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} {metric_type}"]
    for labels, value in samples:
        rendered = ",".join(f'{key}="{_escape_label(val)}"' for key, val in labels.items())
        lines.append(f"{name}{{{rendered}}} {value}")
    return lines


@dataclass
class MetricsCollector:
    """Coroutine-safe store for dashboard counters.

    Tracks per-endpoint request counts and latency, error counts by type
    and requests denied by each named rate limit.
    """

    _endpoints: Dict[str, EndpointStats] = field(
        default_factory=lambda: defaultdict(EndpointStats)
    )
    _errors: Counter = field(default_factory=Counter)
    _rate_limit_hits: Counter = field(default_factory=Counter)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _start_time: float = field(default_factory=time.time)

    async def record_request(
        self, endpoint: str, duration: float, status_code: int
    ) -> None:
        """Record one completed HTTP request.

        Args:
            endpoint: Request path
            duration: Wall time in seconds
            status_code: Response status; 4xx and 5xx count as errors
        """
        async with self._lock:
            self._endpoints[endpoint].observe(duration, status_code)

    async def record_error(self, error_type: str) -> None:
        async with self._lock:
            self._errors[error_type] += 1

    async def record_rate_limit_hit(self, limit_name: str) -> None:
        """Record a request denied by the named rate limit."""
        async with self._lock:
            self._rate_limit_hits[limit_name] += 1

    def _uptime(self) -> float:
        return round(time.time() - self._start_time, 2)

    async def get_summary(self) -> Dict[str, Any]:
        """JSON-friendly snapshot of all counters."""
        async with self._lock:
            total_requests = sum(s.count for s in self._endpoints.values())
            total_errors = sum(s.errors for s in self._endpoints.values())
            total_duration = sum(s.total_duration for s in self._endpoints.values())

            return {
                "uptime_seconds": self._uptime(),
                "total_requests": total_requests,
                "total_errors": total_errors,
                "error_rate": round(total_errors / total_requests, 4) if total_requests else 0,
                "average_latency_ms": (
                    round(total_duration / total_requests * 1000, 2) if total_requests else 0
                ),
                "endpoints": {
                    path: {
                        "count": stats.count,
                        "avg_duration_ms": stats.avg_duration_ms,
                        "error_count": stats.errors,
                    }
                    for path, stats in self._endpoints.items()
                    if stats.count
                },
                "rate_limit": {
                    "hits": dict(self._rate_limit_hits),
                    "total_hits": sum(self._rate_limit_hits.values()),
                },
                "errors_by_type": dict(self._errors),
            }

    async def get_prometheus_metrics(self) -> str:
        """Render all counters in Prometheus text format."""
        async with self._lock:
            endpoints = list(self._endpoints.items())
            blocks = [
                _metric_block(
                    "dashboard_requests_total",
                    "Total number of requests",
                    "counter",
                    (({"endpoint": path}, stats.count) for path, stats in endpoints),
                ),
                _metric_block(
                    "dashboard_request_duration_seconds",
                    "Total request duration",
                    "counter",
                    (({"endpoint": path}, stats.total_duration) for path, stats in endpoints),
                ),
                _metric_block(
                    "dashboard_errors_total",
                    "Total number of error responses",
                    "counter",
                    [({}, sum(stats.errors for _, stats in endpoints))],
                ),
                _metric_block(
                    "dashboard_rate_limit_hits_total",
                    "Requests denied by rate limit",
                    "counter",
                    (({"limit": name}, count) for name, count in self._rate_limit_hits.items()),
                ),
                _metric_block(
                    "dashboard_uptime_seconds",
                    "Dashboard uptime in seconds",
                    "gauge",
                    [({}, self._uptime())],
                ),
            ]

        return "\n\n".join("\n".join(block) for block in blocks) + "\n"


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Return the process-wide collector, creating it on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Drop the process-wide collector (used by tests)."""
    global _metrics_collector
    _metrics_collector = None

