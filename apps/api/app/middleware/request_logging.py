from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, resolve_http_path_label
from app.platform.security.context import SecurityContext
from app.platform.security.scope import scope_kind


logger = logging.getLogger("app.request")


def _caller_fields(request: Request) -> dict[str, Any]:
    ctx = getattr(request.state, "security", None)
    if not isinstance(ctx, SecurityContext):
        return {}
    identity = ctx.identity
    return {
        "subject_id": ctx.subject_id,
        "role": identity.role.value if identity is not None else None,
        "organization_id": ctx.organization_id,
        "scope": scope_kind(ctx.scope),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line and one metrics observation per request, tagged with who asked and in which scope."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = self._finish(request, 500, started)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        logger.info("http.request", extra=self._finish(request, response.status_code, started))
        return response

    @staticmethod
    def _finish(request: Request, status_code: int, started: float) -> dict[str, Any]:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        path = resolve_http_path_label(request)
        observe_http_request(method=request.method, path=path, status=status_code, duration=duration_ms / 1000)
        return {
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            **_caller_fields(request),
        }
