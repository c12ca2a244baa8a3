"""
ScribeConnect Backend: Request Logging Middleware
==================================================

What:  One structured log line per HTTP request.
How:   Measures wall time around call_next and logs method, path, status,
       duration, request id, session id and the caller's identity header.
When:  Runs inside CorrelationMiddleware, so both ids are already set.

Severity by status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Never logged: request bodies (profiles carry mobile numbers and emails).
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from scribeconnect.config import settings
from scribeconnect.middleware.correlation import request_id_var, session_id_var

logger = logging.getLogger("scribeconnect.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request; health probes and docs are skipped."""

    QUIET_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        sid = session_id_var.get("")
        user_id = request.headers.get(settings.identity_header, "-")

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s session=%s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            sid,
            extra={
                "request_id": rid,
                "session_id": sid,
                "user_id": user_id,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
            },
        )

        return response
