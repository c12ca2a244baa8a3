"""
ScribeConnect Backend: Audit Logging Port
==========================================

What:  A single injected port for the append-only audit trail (page views,
       form submissions, client errors, auth events, data changes).
How:   Callers invoke the port synchronously; the database implementation
       schedules the INSERT as a background task on its own session and
       forgets it. A failed audit write is logged at WARNING and never
       surfaces to the workflow that produced the event.
       Services record entries right after flushing their write, so an entry
       states an intended change; the request's own commit may still fail.
Who:   RequestLifecycleController, ExamService, ProfileService, and the
       /api/audit/events route.

Port:
    AuditLogger (abstract)
    └── DatabaseAuditLogger → activity_logs table

Every entry is tagged with the caller's user id and the audit session id
(X-Session-ID); IP address and user agent come from the current request.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scribeconnect.config import settings
from scribeconnect.database import async_session_factory
from scribeconnect.middleware.correlation import client_info_var, session_id_var
from scribeconnect.models.activity_log import ActivityLog
from scribeconnect.session import UserSession

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    category: str
    event_type: str
    user_id: Optional[uuid.UUID] = None
    session_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    page_url: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: Optional[bool] = None
    severity: Optional[str] = None
    error_message: Optional[str] = None


class AuditLogger(ABC):
    """
    Abstract audit port.

    Contract:
        - record() returns immediately and never raises
        - drain() waits for writes still in flight (used at shutdown and in tests)
    """

    @abstractmethod
    def record(self, entry: AuditEntry) -> None:
        ...

    async def drain(self) -> None:
        return None

    # ── Entry construction ────────────────────────────────────────────────

    def _entry(
        self,
        session: Optional[UserSession],
        category: str,
        event_type: str,
        **fields: Any,
    ) -> AuditEntry:
        ip_address, user_agent = client_info_var.get()
        return AuditEntry(
            category=category,
            event_type=event_type,
            user_id=fields.pop("user_id", session.user_id if session else None),
            session_id=session.session_id if session else (session_id_var.get("") or None),
            ip_address=ip_address,
            user_agent=user_agent,
            **fields,
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    def log_activity(
        self,
        session: Optional[UserSession],
        activity_type: str,
        details: Optional[Dict[str, Any]] = None,
        page_url: Optional[str] = None,
    ) -> None:
        self.record(self._entry(session, "activity", activity_type, details=details, page_url=page_url))

    def log_page_navigation(
        self,
        session: Optional[UserSession],
        page_path: str,
        page_title: Optional[str] = None,
        referrer: Optional[str] = None,
        time_spent_seconds: Optional[int] = None,
    ) -> None:
        details = {"page_title": page_title, "referrer": referrer}
        if time_spent_seconds is not None:
            details["time_spent_seconds"] = time_spent_seconds
        self.record(self._entry(session, "navigation", "page_view", details=details, page_url=page_path))

    def log_form_submission(
        self,
        session: Optional[UserSession],
        form_name: str,
        success: bool = True,
        validation_errors: Optional[List[str]] = None,
        processing_time_ms: Optional[int] = None,
    ) -> None:
        details = {
            "validation_errors": validation_errors,
            "processing_time_ms": processing_time_ms,
        }
        self.record(self._entry(session, "form_submission", form_name, details=details, success=success))

    def log_error(
        self,
        session: Optional[UserSession],
        error_type: str,
        error_message: str,
        context: Optional[Dict[str, Any]] = None,
        severity: str = "medium",
    ) -> None:
        self.record(
            self._entry(
                session,
                "error",
                error_type,
                details=context,
                error_message=error_message,
                severity=severity,
                success=False,
            )
        )

    def log_auth_event(
        self,
        user_id: Optional[uuid.UUID],
        event_type: str,
        success: bool = True,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.record(
            self._entry(
                None,
                "auth",
                event_type,
                user_id=user_id,
                details=details,
                success=success,
                error_message=error_message,
            )
        )

    def log_data_change(
        self,
        session: Optional[UserSession],
        table_name: str,
        record_id: Any,
        change_type: str,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        change_reason: Optional[str] = None,
    ) -> None:
        details = {
            "table_name": table_name,
            "record_id": str(record_id),
            "old_values": old_values,
            "new_values": new_values,
            "change_reason": change_reason,
        }
        self.record(self._entry(session, "data_change", change_type, details=details))

    def log_system_action(
        self,
        action_type: str,
        details: Optional[Dict[str, Any]] = None,
        affected_records: Optional[int] = None,
    ) -> None:
        payload = dict(details or {})
        if affected_records is not None:
            payload["affected_records"] = affected_records
        self.record(self._entry(None, "system", action_type, details=payload))

    def log_client_event(
        self,
        user_id: Optional[uuid.UUID],
        category: str,
        event_type: str,
        details: Optional[Dict[str, Any]] = None,
        page_url: Optional[str] = None,
        success: Optional[bool] = None,
        severity: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Records an event reported by the browser, which may not be signed in yet."""
        self.record(
            self._entry(
                None,
                category,
                event_type,
                user_id=user_id,
                details=details,
                page_url=page_url,
                success=success,
                severity=severity,
                error_message=error_message,
            )
        )

    def track_exam_activity(
        self,
        session: Optional[UserSession],
        action: str,
        exam_id: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log_activity(session, f"exam_{action}", {"exam_id": str(exam_id), **(details or {})})

    def track_notification_activity(
        self,
        session: Optional[UserSession],
        action: str,
        notification_id: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log_activity(
            session,
            f"notification_{action}",
            {"notification_id": str(notification_id), **(details or {})},
        )

    def track_profile_activity(
        self,
        session: Optional[UserSession],
        action: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.log_activity(session, f"profile_{action}", details)


class DatabaseAuditLogger(AuditLogger):
    """
    Writes audit entries to activity_logs without blocking the caller.

    Each record() call creates one asyncio task holding its own session.
    Tasks are kept in a set until done so they are not garbage-collected
    mid-write.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        enabled: bool = True,
    ):
        self._session_factory = session_factory
        self.enabled = enabled
        self._pending: Set[asyncio.Task] = set()

    def record(self, entry: AuditEntry) -> None:
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; dropping audit event %s", entry.event_type)
            return
        task = loop.create_task(self._write(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: AuditEntry) -> None:
        try:
            async with self._session_factory() as db:
                db.add(
                    ActivityLog(
                        user_id=entry.user_id,
                        session_id=entry.session_id,
                        category=entry.category,
                        event_type=entry.event_type,
                        details=entry.details,
                        page_url=entry.page_url,
                        ip_address=entry.ip_address,
                        user_agent=entry.user_agent,
                        success=entry.success,
                        severity=entry.severity,
                        error_message=entry.error_message,
                    )
                )
                await db.commit()
        except Exception as e:
            logger.warning(
                "Failed to record audit event %s/%s: %s",
                entry.category,
                entry.event_type,
                str(e),
            )

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# ── Singleton Instance ────────────────────────────────────────────────────
audit_logger = DatabaseAuditLogger(enabled=settings.audit_enabled)


def get_audit_logger() -> AuditLogger:
    """FastAPI dependency; tests override it with a recording fake."""
    return audit_logger
