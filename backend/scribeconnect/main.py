"""
ScribeConnect Backend: FastAPI Application Factory
===================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan owns the process-wide realtime objects.
Who:   uvicorn (uvicorn scribeconnect.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware: Correlation → Logging → GZip → CORS         │
    │                                                          │
    │  Routes:                                                 │
    │    /api/profiles   /api/exams   /api/requests            │
    │    /api/audit/events   /ws/notifications   /health       │
    │                                                          │
    │  app.state:                                              │
    │    change_feed      PostgresChangeFeed (LISTEN/NOTIFY)   │
    │    bridge_registry  one RealtimeNotificationBridge per   │
    │                     audit session                        │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:   logging, configuration check, change feed + bridge registry
               (the LISTEN connection opens lazily on the first subscriber)
    Shutdown:  close bridges, close the change feed, drain audit writes,
               dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from scribeconnect import __version__
from scribeconnect.config import settings
from scribeconnect.database import dispose_engine
from scribeconnect.exceptions import (
    AuthenticationError,
    DatabaseError,
    DuplicatePendingError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ScribeConnectError,
    SubmissionInProgressError,
    ValidationError,
)
from scribeconnect.middleware.correlation import CorrelationMiddleware, request_id_var
from scribeconnect.middleware.logging import RequestLoggingMiddleware
from scribeconnect.routes import audit, exams, health, profiles, realtime, requests
from scribeconnect.services.audit_service import audit_logger
from scribeconnect.services.change_feed import create_change_feed
from scribeconnect.services.realtime_bridge import BridgeRegistry, database_fetcher

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: 2026-10-18T09:30:00 [INFO] scribeconnect.services.lifecycle_service: ...
    Request and session ids are part of the access log line, not the format.
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("ScribeConnect Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    feed = create_change_feed()
    registry = BridgeRegistry(
        feed,
        database_fetcher(),
        settle_delay=settings.realtime_settle_delay_ms / 1000,
        poll_interval=settings.realtime_poll_interval_seconds,
    )
    app.state.change_feed = feed
    app.state.bridge_registry = registry
    logger.info(
        "Realtime: channel '%s', settle %dms, polling fallback every %.0fs",
        settings.realtime_channel,
        settings.realtime_settle_delay_ms,
        settings.realtime_poll_interval_seconds,
    )

    audit_logger.log_system_action("startup", {"version": __version__})
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("ScribeConnect Backend shutting down...")

    await registry.close_all()
    await feed.close()

    audit_logger.log_system_action("shutdown")
    await audit_logger.drain()

    await dispose_engine()

    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to HTTP responses.

    Handler table:
        ValidationError            → 400 validation_error
        AuthenticationError        → 401 authentication_required
        PermissionDeniedError      → 403 permission_denied
        NotFoundError              → 404 not_found
        DuplicatePendingError      → 409 duplicate_pending
        InvalidTransitionError     → 409 invalid_transition
        SubmissionInProgressError  → 409 submission_in_progress
        DatabaseError              → 500 server_error (context logged only)
        ScribeConnectError (base)  → 500 server_error
        Exception (fallback)       → 500 internal_server_error

    Body: {"error", "message", "details"?, "request_id"}
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=401,
            content={
                "error": "authentication_required",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        rid = request_id_var.get("")
        logger.warning("[%s] Permission denied: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=403,
            content={
                "error": "permission_denied",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": exc.message,
                "request_id": rid,
            },
        )

    async def handle_conflict(request: Request, exc: ScribeConnectError, code: str):
        rid = request_id_var.get("")
        logger.info("[%s] Conflict (%s): %s", rid, code, exc.message)
        return JSONResponse(
            status_code=409,
            content={
                "error": code,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(DuplicatePendingError)
    async def handle_duplicate_pending(request: Request, exc: DuplicatePendingError):
        return await handle_conflict(request, exc, "duplicate_pending")

    @app.exception_handler(InvalidTransitionError)
    async def handle_invalid_transition(request: Request, exc: InvalidTransitionError):
        return await handle_conflict(request, exc, "invalid_transition")

    @app.exception_handler(SubmissionInProgressError)
    async def handle_submission_in_progress(request: Request, exc: SubmissionInProgressError):
        return await handle_conflict(request, exc, "submission_in_progress")

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(ScribeConnectError)
    async def handle_application_error(request: Request, exc: ScribeConnectError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error(
            "[%s] Unexpected error: %s",
            rid,
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="ScribeConnect API",
        description=(
            "Matches students with disabilities to volunteer scribes for their exams. "
            "Students add exams and request writers; writers accept, reject and "
            "complete requests; both sides receive live notification updates."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Execution order is the reverse of addition:
    # Correlation → Logging → GZip → CORS

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            settings.session_header,
        ],
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(CorrelationMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(profiles.router)
    app.include_router(exams.router)
    app.include_router(requests.router)
    app.include_router(audit.router)
    app.include_router(realtime.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
