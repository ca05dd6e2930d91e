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

scope_denied_total = Counter(
    "scope_denied_total",
    "Total tenant scope denials by resource and reason",
    ["resource", "reason"],
)

scope_resolution_failures_total = Counter(
    "scope_resolution_failures_total",
    "Total actors that could not be given a tenant scope",
    ["role"],
)

tenant_mutations_total = Counter(
    "tenant_mutations_total",
    "Total tenant mutations by action and outcome",
    ["action", "outcome"],
)

case_transitions_total = Counter(
    "case_transitions_total",
    "Total case status transitions",
    ["to_status", "override"],
)

case_conflicts_total = Counter(
    "case_conflicts_total",
    "Total rejected case mutations by reason",
    ["reason"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_scope_denied(resource: str, reason: str) -> None:
    scope_denied_total.labels(resource=resource, reason=reason).inc()


def observe_scope_resolution_failure(role: str) -> None:
    scope_resolution_failures_total.labels(role=role).inc()


def observe_tenant_mutation(action: str, outcome: str) -> None:
    tenant_mutations_total.labels(action=action, outcome=outcome).inc()


def observe_case_transition(to_status: str, override: bool) -> None:
    case_transitions_total.labels(to_status=to_status, override=str(override).lower()).inc()


def observe_case_conflict(reason: str) -> None:
    case_conflicts_total.labels(reason=reason).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
