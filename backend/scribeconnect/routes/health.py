"""
ScribeConnect Backend: Health Check Route
==========================================

What:  GET /health for container probes and monitoring.
How:   Runs SELECT 1 against the database and reports the change feed state
       and the number of open realtime bridges.

Status levels:
    healthy:    database reachable
    unhealthy:  database unreachable (the service cannot do anything useful)

    The change feed never makes the service unhealthy: clients fall back to
    polling when it is down. It reports "listening" once a subscriber has
    connected it and "idle" before that.
"""

import logging
import time

from fastapi import APIRouter, Request
from sqlalchemy import text

from scribeconnect import __version__
from scribeconnect.database import engine
from scribeconnect.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    feed = getattr(request.app.state, "change_feed", None)
    registry = getattr(request.app.state, "bridge_registry", None)
    if feed is None:
        realtime_status = "unavailable"
    else:
        realtime_status = "listening" if feed.is_connected else "idle"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        realtime=realtime_status,
        active_subscriptions=len(registry) if registry is not None else 0,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
