# Middleware package init
"""
ScribeConnect Backend: Middleware Package
==========================================

Middleware Chain:
    Request → [Correlation] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Correlation: assigns request id and audit session id (ContextVars)
    2. Logging: one line per request, tagged with both ids
    3. GZip / CORS: FastAPI built-ins

    Responses travel back through the chain in reverse, so the logging
    middleware sees the final status code and the correlation middleware
    stamps X-Request-ID and X-Session-ID last.

    WebSocket connections bypass BaseHTTPMiddleware; /ws/notifications takes
    its session id from the query string instead.
"""
