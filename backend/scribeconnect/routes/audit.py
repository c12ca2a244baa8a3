"""
ScribeConnect Backend: Client Audit Events
===========================================

What:  POST /api/audit/events, where the browser reports page views, form
       submissions and client-side errors.
How:   The event is handed to the AuditLogger port and the route returns 202
       immediately. The caller may not be signed in yet: a missing identity
       header is accepted and recorded without a user id; a malformed one is
       rejected.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from scribeconnect.config import settings
from scribeconnect.schemas.common import AuditAccepted, AuditEventCreate
from scribeconnect.services.audit_service import AuditLogger, get_audit_logger
from scribeconnect.session import parse_identity

router = APIRouter(prefix="/api/audit", tags=["Audit"])


@router.post(
    "/events",
    response_model=AuditAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a client-side audit event",
)
async def record_event(
    event: AuditEventCreate,
    request: Request,
    audit: AuditLogger = Depends(get_audit_logger),
) -> AuditAccepted:
    raw_identity = request.headers.get(settings.identity_header)
    user_id: Optional[uuid.UUID] = parse_identity(raw_identity) if raw_identity else None

    audit.log_client_event(
        user_id,
        event.category,
        event.event_type,
        details=event.details,
        page_url=event.page_url,
        success=event.success,
        severity=event.severity,
        error_message=event.error_message,
    )
    return AuditAccepted(session_id=request.state.session_id)
