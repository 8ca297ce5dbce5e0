"""HTTP middleware for the insight service, registered in insights/main.py.

- ``RequestIdMiddleware``: accepts or mints a request id and binds it to
  ``request_id_var`` for the rest of the request task.
- ``RequestLoggingMiddleware``: one access line per request, including the
  ``X-Cache`` outcome and admission headers set by the insight endpoint.
- ``PrometheusMiddleware``: count, latency and in-flight gauge per route.
- ``SecurityHeadersMiddleware``: static response hardening headers.

Usage:
    from insights.common.middleware import request_id_var
    rid = request_id_var.get("")
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from insights.common.logging import get_logger, request_id_var
from insights.common.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

__all__ = [
    "PrometheusMiddleware",
    "RequestIdMiddleware",
    "RequestLoggingMiddleware",
    "SecurityHeadersMiddleware",
    "request_id_var",
]

logger = get_logger("API")

_UNTRACKED_PATHS = frozenset({"/health", "/metrics", "/metrics/"})

# Route templates exported as metric labels; everything else is "other"
_PATH_TEMPLATES = frozenset({"/insights", "/insights/usage"})

# Caller-supplied ids end up in logs and headers, so only plain tokens are accepted
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the request and echo it as ``X-Request-ID``.

    An incoming ``X-Request-ID`` is reused when it is a short plain token;
    otherwise a fresh uuid4 hex id is generated.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        incoming = request.headers.get("x-request-id", "")
        rid = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
        request_id_var.set(rid)
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log: method, path, status, duration, cache outcome, quota left.

    Client and server errors are logged at WARNING, the rest at INFO.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        if request.url.path in _UNTRACKED_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 1)

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "data": {
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "cache": response.headers.get("x-cache"),
                    "remaining": response.headers.get("x-ratelimit-remaining"),
                    "retry_after": response.headers.get("retry-after"),
                }
            },
        )
        return response


def _path_template(path: str) -> str:
    """Collapse a request path onto the known insight routes."""
    trimmed = path.rstrip("/") or "/"
    return trimmed if trimmed in _PATH_TEMPLATES else "other"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """HTTP request count, latency histogram and in-flight gauge.

    An exception escaping the app is recorded as status 500.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        if request.url.path in _UNTRACKED_PATHS:
            return await call_next(request)

        method = request.method
        path_template = _path_template(request.url.path)
        status_code = "500"

        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(method=method)
        in_progress.inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            in_progress.dec()
            HTTP_REQUESTS_TOTAL.labels(
                method=method,
                path_template=path_template,
                status_code=status_code,
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=method,
                path_template=path_template,
            ).observe(time.perf_counter() - start)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers for a JSON API. Headers already set by a route win."""

    HEADERS: dict[str, str] = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        response = await call_next(request)
        for header, value in self.HEADERS.items():
            response.headers.setdefault(header, value)
        return response
