"""
ScribeConnect Backend: Service Dependencies
============================================

What:  FastAPI providers that build the write services around the injected
       AuditLogger. Tests swap the audit port through
       app.dependency_overrides[get_audit_logger].
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import HTTPConnection

from scribeconnect.database import async_session_factory
from scribeconnect.services.audit_service import AuditLogger, get_audit_logger
from scribeconnect.services.exam_service import ExamService
from scribeconnect.services.lifecycle_service import RequestLifecycleController, submission_guard
from scribeconnect.services.profile_service import ProfileService
from scribeconnect.services.realtime_bridge import BridgeRegistry


def get_profile_service(audit: AuditLogger = Depends(get_audit_logger)) -> ProfileService:
    return ProfileService(audit)


def get_exam_service(audit: AuditLogger = Depends(get_audit_logger)) -> ExamService:
    return ExamService(audit)


def get_lifecycle_controller(
    audit: AuditLogger = Depends(get_audit_logger),
) -> RequestLifecycleController:
    # The guard is process-wide so concurrent requests see each other's keys
    return RequestLifecycleController(audit, guard=submission_guard)


def get_bridge_registry(connection: HTTPConnection) -> BridgeRegistry:
    """The registry created by the application lifespan."""
    return connection.app.state.bridge_registry


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for long-lived connections that must not pin one session."""
    return async_session_factory
