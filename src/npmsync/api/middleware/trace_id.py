"""X-Trace-Id propagation and per-request access logging."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from npmsync.logging_config import bind_request_context, clear_context
from npmsync.services.id_generator import generate_id

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-Id"


class TraceIdMiddleware(BaseHTTPMiddleware):
    """Reuses the caller's trace id or mints one, and echoes it on the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or generate_id("trc_")
        request.state.trace_id = trace_id
        bind_request_context(trace_id, request.headers.get("x-user-id"))
        started = time.perf_counter()
        try:
            response = await call_next(request)
            logger.info(
                "%s %s -> %d in %.1fms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        finally:
            clear_context()
        response.headers[TRACE_HEADER] = trace_id
        return response
