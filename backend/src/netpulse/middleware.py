"""Request middleware for NetPulse.

CorrelationIDMiddleware tags each request (and any speed test run it starts)
with an ID that is echoed back in X-Correlation-ID. RequestLoggingMiddleware
records every request in the metrics collector and logs the ones that are not
health checks, scrapes or the dashboard's status polling.
"""

import time
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .config import get_settings
from .logging import set_correlation_id
from .metrics import get_metrics

log = structlog.get_logger()

RESPONSE_HEADER = "X-Correlation-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Reuses X-Correlation-ID or X-Request-ID from the caller, else generates one."""

    HEADER_NAMES = ("x-correlation-id", "x-request-id")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = next(
            (request.headers[name] for name in self.HEADER_NAMES if request.headers.get(name)),
            None,
        )
        correlation_id = set_correlation_id(incoming)

        response = await call_next(request)
        response.headers[RESPONSE_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Times requests, records them as metrics and logs the outcome."""

    def __init__(self, app, quiet_paths: set[str] | None = None):
        super().__init__(app)
        if quiet_paths is None:
            quiet_paths = set(get_settings().logging.quiet_paths)
        self.quiet_paths = quiet_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        start_time = time.perf_counter()

        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        get_metrics().record_request(
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        if path in self.quiet_paths:
            return response

        event = {
            "method": request.method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "client_ip": request.client.host if request.client else None,
        }
        if response.status_code >= 500:
            # History reads and result writes report failures as plain 500s
            log.error("request_failed", **event)
        else:
            log.info("request_completed", **event)

        return response
