"""
ScribeConnect Backend: Realtime Notifications WebSocket
========================================================

What:  /ws/notifications?user_id=<uuid>&session_id=<audit session id>
How:   Resolves the UserSession, opens a RealtimeNotificationBridge through
       the app's BridgeRegistry, and pushes a NotificationPush frame on every
       refresh (initial list, each change event, or each poll tick while the
       change feed is unavailable).

Frames sent:
    {"realtime": true, "notifications": [ ...EnrichedMatchRequest... ]}

Client messages are read only to notice disconnects; "ping" gets "pong".
An unknown or missing identity closes the socket with 1008 before accept.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scribeconnect.dependencies import get_bridge_registry, get_session_factory
from scribeconnect.exceptions import AuthenticationError, NotFoundError
from scribeconnect.schemas.match_request import EnrichedMatchRequest, NotificationPush
from scribeconnect.services.audit_service import AuditLogger, get_audit_logger
from scribeconnect.services.realtime_bridge import BridgeRegistry
from scribeconnect.session import load_user_session, parse_identity

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    user_id: Optional[str] = Query(default=None),
    session_id: Optional[str] = Query(default=None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    registry: BridgeRegistry = Depends(get_bridge_registry),
    audit: AuditLogger = Depends(get_audit_logger),
) -> None:
    try:
        identity = parse_identity(user_id)
        async with session_factory() as db:
            session = await load_user_session(db, identity, session_id)
    except (AuthenticationError, NotFoundError) as e:
        logger.info("Rejected notifications socket: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()

    async def push(notifications: List[EnrichedMatchRequest]) -> None:
        current = registry.get(session.session_id)
        frame = NotificationPush(
            realtime=current.realtime_enabled if current is not None else False,
            notifications=notifications,
        )
        await websocket.send_json(frame.model_dump(mode="json"))

    bridge = await registry.open(session, push)
    audit.track_notification_activity(
        session, "subscribed", session.session_id, {"realtime": bridge.realtime_enabled}
    )
    logger.info(
        "Notifications socket open for %s (session %s, realtime=%s)",
        session.user_id,
        session.session_id,
        bridge.realtime_enabled,
    )

    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.debug("Notifications socket closed by client %s", session.user_id)
    finally:
        await registry.close(session.session_id, bridge)
