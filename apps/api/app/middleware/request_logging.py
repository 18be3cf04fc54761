from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")

_QUIET_PATHS = {"/health", "/metrics"}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Records one metrics sample and one log line per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        client_ip = request.client.host if request.client else None
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            path = resolve_http_path_label(request)
            duration_ms = _elapsed_ms(started)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            logger.error(
                "http.error",
                exc_info=True,
                extra={
                    "method": method,
                    "path": path,
                    "status_code": 500,
                    "duration_ms": duration_ms,
                    "client_ip": client_ip,
                },
            )
            raise

        # The route is only resolved once the router has run.
        path = resolve_http_path_label(request)
        duration_ms = _elapsed_ms(started)
        observe_http_request(method=method, path=path, status=response.status_code, duration=duration_ms / 1000)

        extra = {
            "method": method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "client_ip": client_ip,
        }
        if response.status_code >= 500:
            logger.warning("http.request", extra=extra)
        elif path in _QUIET_PATHS:
            logger.debug("http.request", extra=extra)
        else:
            logger.info("http.request", extra=extra)
        return response
