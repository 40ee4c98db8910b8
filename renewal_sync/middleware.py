"""Request logging for push deliveries and control calls."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from renewal_sync.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

TRACE_HEADER = "x-cloud-trace-context"

QUIET_PATHS = frozenset({"/health"})


def request_id_from(request: Request) -> str:
    """Trace ID from the Cloud trace header (``TRACE_ID/SPAN_ID;o=1``), else a fresh uuid4."""
    trace = request.headers.get(TRACE_HEADER, "")
    return trace.split("/", 1)[0].strip() or str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Binds a request_id and logs one completion line per request.

    Health probes log at DEBUG. Answers that make Pub/Sub redeliver (5xx)
    log at WARNING, rejected deliveries (4xx) at INFO with the status.

    Args:
        app: ASGI application
        include_request_details: also log client host and user agent
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request_id_from(request)
        path = request.url.path
        bind_context(request_id=request_id)
        if path.startswith("/webhooks/"):
            bind_context(delivery="push")

        details = {}
        if self.include_request_details:
            details = {
                "client_host": request.client.host if request.client else "unknown",
                "user_agent": request.headers.get("user-agent"),
            }

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

            if path in QUIET_PATHS:
                log = logger.debug
            elif response.status_code >= 500:
                log = logger.warning
            else:
                log = logger.info
            log(
                "request_completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                **details,
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        finally:
            clear_context()
