"""Structured request logging middleware.

Every request gets a request_id: the caller's X-Request-ID when present,
otherwise a fresh UUID. It is bound into structlog's context variables for
the duration of the request, so bot and poller events logged while handling
it (bot.created, poller.force_poll, ...) carry the same id, and it is
echoed back on the response.

Health probes are logged at debug level to keep load balancer checks out
of the request log.
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_QUIET_PATH_SUFFIXES = ("/health", "/health/ready")


def _log_method_for(path: str, status_code: int):
    if status_code >= 500:
        return logger.error
    if status_code >= 400:
        return logger.warning
    if path.endswith(_QUIET_PATH_SUFFIXES):
        return logger.debug
    return logger.info


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request once, with timing, under a bound request id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        path = request.url.path
        start_time = time.monotonic()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "request_error",
                    method=request.method,
                    path=path,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                    exc_info=True,
                )
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            _log_method_for(path, response.status_code)(
                "request_completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
        return response
