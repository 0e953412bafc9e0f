from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

task_creations_total = Counter(
    "task_creations_total",
    "Task creation requests by outcome",
    ["outcome"],
)

task_notification_failures_total = Counter(
    "task_notification_failures_total",
    "Task notifications that failed to publish",
    ["backend"],
)

rls_denied_total = Counter(
    "rls_denied_total",
    "Row access denied by row-level policies",
    ["resource", "action"],
)

membership_lookups_total = Counter(
    "membership_lookups_total",
    "Team membership lookups performed while building an auth context",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_task_creation(outcome: str) -> None:
    task_creations_total.labels(outcome=outcome).inc()


def observe_task_notification_failure(backend: str) -> None:
    task_notification_failures_total.labels(backend=backend).inc()


def observe_rls_denied(resource: str, action: str) -> None:
    rls_denied_total.labels(resource=resource, action=action).inc()


def observe_membership_lookup() -> None:
    membership_lookups_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
