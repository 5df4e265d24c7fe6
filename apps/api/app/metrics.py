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

authz_decisions_total = Counter(
    "authz_decisions_total",
    "Permission decisions taken at the HTTP boundary",
    ["resource", "action", "outcome"],
)

scope_resolutions_total = Counter(
    "scope_resolutions_total",
    "Resolved tenant scopes by kind",
    ["kind"],
)

scope_denials_total = Counter(
    "scope_denials_total",
    "Record reads and writes rejected for being outside the tenant scope",
    ["resource", "operation"],
)

navigation_redirects_total = Counter(
    "navigation_redirects_total",
    "Navigation guard redirects by reason",
    ["reason"],
)

elevated_verifications_total = Counter(
    "elevated_verifications_total",
    "Elevated session verification outcomes",
    ["outcome"],
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
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_authz_decision(resource: str, action: str, allowed: bool) -> None:
    outcome = "allow" if allowed else "deny"
    authz_decisions_total.labels(resource=resource, action=action, outcome=outcome).inc()


def observe_scope_resolution(kind: str) -> None:
    scope_resolutions_total.labels(kind=kind).inc()


def observe_scope_denial(resource: str, operation: str) -> None:
    scope_denials_total.labels(resource=resource, operation=operation).inc()


def observe_navigation_redirect(reason: str) -> None:
    navigation_redirects_total.labels(reason=reason).inc()


def observe_elevated_verification(outcome: str) -> None:
    elevated_verifications_total.labels(outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
