"""
ScribeConnect Backend: Correlation Middleware
==============================================

What:  Assigns two identifiers to every HTTP request and exposes them to the
       rest of the code through ContextVars:
         - request id (X-Request-ID): one per HTTP request, for log correlation
         - session id (X-Session-ID): one per browser session, for audit rows
How:   Client-supplied values are honoured; missing ones are generated. Both
       are echoed in the response headers so the browser can persist the
       session id across page loads.

Session id format: session_<epoch milliseconds>_<9 lowercase base36 chars>
    e.g. session_1760790000000_k3j9x0q2a
"""

import random
import string
import time
import uuid
from contextvars import ContextVar
from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from scribeconnect.config import settings

# Coroutine-local: concurrent requests in the same thread each see their own value
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
session_id_var: ContextVar[str] = ContextVar("session_id", default="")

# (client ip, user agent) for audit rows recorded during this request
client_info_var: ContextVar[Tuple[Optional[str], Optional[str]]] = ContextVar(
    "client_info", default=(None, None)
)

_BASE36 = string.digits + string.ascii_lowercase
_MAX_SESSION_ID_LENGTH = 64


def generate_session_id() -> str:
    """Builds a new audit session identifier."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def normalize_session_id(value: Optional[str]) -> str:
    """Returns the client's session id when usable, otherwise a fresh one."""
    if value and 0 < len(value) <= _MAX_SESSION_ID_LENGTH:
        return value
    return generate_session_id()


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Sets request_id_var, session_id_var and client_info_var for the request,
    mirrors them on request.state, and returns both ids as response headers.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        sid = normalize_session_id(request.headers.get(settings.session_header))

        client_ip = request.client.host if request.client else None
        user_agent = request.headers.get("User-Agent")

        request_id_var.set(rid)
        session_id_var.set(sid)
        client_info_var.set((client_ip, user_agent))

        request.state.request_id = rid
        request.state.session_id = sid

        response = await call_next(request)

        response.headers["X-Request-ID"] = rid
        response.headers[settings.session_header] = sid
        return response
