"""
Prometheus metrics middleware.

HTTP request counter + latency histogram, plus domain counters for logins,
workflow transitions and post-action failures.
"""

import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Domain metrics ───────────────────────────────────────────────────────────

login_attempts_total = Counter(
    "login_attempts_total",
    "Login attempts",
    ["outcome"],
)

assessment_transitions_total = Counter(
    "assessment_transitions_total",
    "Assessment workflow transitions",
    ["from_state", "to_state"],
)

post_action_failures_total = Counter(
    "post_action_failures_total",
    "Workflow post-actions that raised",
    ["action"],
)

_UUID = re.compile(r"^[0-9a-fA-F-]{32,36}$")


def _normalize_path(path: str) -> str:
    """Collapse ids to keep label cardinality bounded.

    e.g. /api/v1/assessments/5f0c...e1 → /api/v1/assessments/{id}
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (_UUID.match(part) or part.isdigit()):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(method=method, path=path, status_code=response.status_code).inc()
        http_request_duration_seconds.labels(method=method, path=path).observe(duration)

        return response
