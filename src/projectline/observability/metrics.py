from __future__ import annotations

"""Prometheus metrics for the Projectline API.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for assistant actions and provider calls.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "projectline_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

AI_ACTIONS = Counter(
    "projectline_ai_actions_total",
    "Assistant-proposed actions executed, by type and outcome",
    labelnames=("type", "outcome"),
)

LLM_REQUESTS = Counter(
    "projectline_llm_requests_total",
    "Chat provider calls, by provider and outcome",
    labelnames=("provider", "outcome"),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /chat/conversations/{id}) to a coarse label.

    Keeps the first static segment, or the first two under the ``/api`` prefix.
    """
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api" and len(segs) > 1:
        return "/api/" + segs[1]
    return "/" + segs[0]


def record_action(action_type: str, success: bool) -> None:
    AI_ACTIONS.labels(type=action_type, outcome="success" if success else "error").inc()


def record_llm_call(provider: str, outcome: str) -> None:
    LLM_REQUESTS.labels(provider=provider, outcome=outcome).inc()


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
