from __future__ import annotations

"""Prometheus metrics for the agentgate FastAPI service.

Adds an HTTP middleware that records request latency per method/path/status
and exposes gauges/counters for the session lifecycle.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Gauge, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds); agent replies are slow
REQUEST_LATENCY = Histogram(
    "agentgate_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

ACTIVE_SESSIONS = Gauge(
    "agentgate_active_sessions",
    "Sessions currently holding a capacity slot",
)

QUEUED_SESSIONS = Gauge(
    "agentgate_queued_sessions",
    "Session ids waiting in the admission queue",
)

SESSIONS_ADMITTED = Counter(
    "agentgate_sessions_admitted_total",
    "Sessions admitted, by admission path",
    labelnames=("path",),
)

SESSIONS_EXPIRED = Counter(
    "agentgate_sessions_expired_total",
    "Sessions removed after the inactivity timeout",
)

CONSTRUCTION_FAILURES = Counter(
    "agentgate_agent_construction_failures_total",
    "Agent handle constructions that failed or timed out",
    labelnames=("path",),
)

QUEUE_DROPPED = Counter(
    "agentgate_queue_dropped_total",
    "Queued ids dropped after exhausting their retry budget",
)


def observe_occupancy(active: int, queued: int) -> None:
    ACTIVE_SESSIONS.set(active)
    QUEUED_SESSIONS.set(queued)


def sanitize_path(path: str) -> str:
    """Reduce paths to their first segment (``/api/chat`` -> ``/api``)."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # metrics must never fail a request
            pass
        return response

    return middleware
