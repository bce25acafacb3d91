"""Request context middleware: correlation ids, circle scoping and access logs."""

import re
import time
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"

# Circle-scoped routes all live under /circles/{circle_id}/...
CIRCLE_PATH = re.compile(r"^/circles/([0-9a-fA-F-]{36})(?:/|$)")

QUIET_PATHS = {"/health"}


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind request context to every log line emitted while serving a request.

    - correlation_id from the X-Correlation-Id header, or a new UUID4; stored
      in request.state and echoed on the response
    - circle_id for routes under /circles/{circle_id}/, so analyzer and
      generator events can be followed per circle
    - one request_completed event with status and latency (debug level for
      /health)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        request.state.correlation_id = correlation_id

        context = {"correlation_id": correlation_id}
        match = CIRCLE_PATH.match(request.url.path)
        if match:
            context["circle_id"] = match.group(1).lower()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
