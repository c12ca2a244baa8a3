"""
ScribeConnect Backend: Request Lifecycle Controller
====================================================

What:  Every write to match_requests, plus exam deletion (which must clear
       dependent requests first).
How:   Validates ownership and the role-based transition table against the
       stored row, writes through the caller's AsyncSession (flush only; the
       get_db_session dependency commits), then records an audit event.
Who:   /api/requests routes and DELETE /api/exams/{id}.

Audit timing:
    Audit entries are intents. They are recorded once the write has been
    flushed, on the audit logger's own session, before the request's commit.
    A commit that fails afterwards leaves an entry with no matching row;
    readers of activity_logs join back to match_requests to confirm a change.

Transition table (acting role, current status) → allowed next statuses:

    writer   pending   → accepted, rejected
    writer   accepted  → completed, rejected      ("cancel assistance")
    student  pending   → cancelled
    student  accepted  → cancelled

    rejected and cancelled rows are never transitioned again; the student
    creates a new request instead. completed is terminal.

The acting role is the role stored on the caller's profile, resolved by
get_user_session, never a value sent by the client.

Duplicate submissions:
    InFlightGuard rejects a second create/transition/delete of the same key
    while the first is still being processed in this process. Across
    processes, the partial unique index on pending (student, writer) pairs
    is the last line, and its violation is reported as DuplicatePendingError.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, FrozenSet, Hashable, List, Optional, Set, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.exceptions import (
    DatabaseError,
    DuplicatePendingError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ScribeConnectError,
    SubmissionInProgressError,
    ValidationError,
)
from scribeconnect.models.exam import ExamRequest
from scribeconnect.models.match_request import MatchRequest, MatchStatus
from scribeconnect.models.profile import Profile, UserRole
from scribeconnect.services.audit_service import AuditLogger
from scribeconnect.session import UserSession

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[Tuple[UserRole, MatchStatus], FrozenSet[MatchStatus]] = {
    (UserRole.WRITER, MatchStatus.PENDING): frozenset({MatchStatus.ACCEPTED, MatchStatus.REJECTED}),
    (UserRole.WRITER, MatchStatus.ACCEPTED): frozenset({MatchStatus.COMPLETED, MatchStatus.REJECTED}),
    (UserRole.STUDENT, MatchStatus.PENDING): frozenset({MatchStatus.CANCELLED}),
    (UserRole.STUDENT, MatchStatus.ACCEPTED): frozenset({MatchStatus.CANCELLED}),
}


def is_transition_allowed(role: UserRole, current: MatchStatus, new: MatchStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get((role.effective, current), frozenset())


class InFlightGuard:
    """
    Process-local set of action keys currently being processed.

    Usage:
        async with guard.hold("transition", request_id):
            ...
    """

    def __init__(self) -> None:
        self._keys: Set[Tuple[Hashable, ...]] = set()

    def is_held(self, *key: Hashable) -> bool:
        return key in self._keys

    @asynccontextmanager
    async def hold(self, action: str, *key: Hashable) -> AsyncGenerator[None, None]:
        full_key = (action, *key)
        if full_key in self._keys:
            logger.info("Rejected duplicate %s submission: %s", action, key)
            raise SubmissionInProgressError(action=action)
        self._keys.add(full_key)
        try:
            yield
        finally:
            self._keys.discard(full_key)


class RequestLifecycleController:
    """
    Creates, transitions and deletes match requests.

    Error Handling Strategy:
        Application exceptions (NotFound, PermissionDenied, InvalidTransition,
        DuplicatePending, SubmissionInProgress) propagate unchanged. Anything
        else from the store is logged and wrapped in DatabaseError.
        Store writes are never retried automatically.
    """

    def __init__(self, audit: AuditLogger, guard: Optional[InFlightGuard] = None):
        self._audit = audit
        self._guard = guard or InFlightGuard()

    # ── Create ────────────────────────────────────────────────────────────

    async def create_request(
        self,
        db: AsyncSession,
        session: UserSession,
        writer_id: uuid.UUID,
        exam_id: uuid.UUID,
        idempotency_key: Optional[str] = None,
    ) -> MatchRequest:
        """
        Inserts a pending request from the session's student to a writer.

        Returns the existing row unchanged when `idempotency_key` was already
        used by this student for the same writer and exam.

        Raises:
            PermissionDeniedError: Caller is not a student or does not own the exam
            NotFoundError: Exam or writer does not exist
            DuplicatePendingError: A pending request to this writer already exists
            SubmissionInProgressError: Same create still being processed
            ValidationError: `idempotency_key` already names a different request
            DatabaseError: Store failure
        """
        if not session.is_student:
            raise PermissionDeniedError(
                message="Only students can request a writer",
                context={"user_id": str(session.user_id)},
            )

        async with self._guard.hold("create", session.user_id, writer_id):
            try:
                if idempotency_key:
                    existing = await self._find_by_idempotency_key(
                        db, session.user_id, idempotency_key
                    )
                    if existing is not None:
                        return self._replay(existing, writer_id, exam_id, idempotency_key)

                exam = await db.get(ExamRequest, exam_id)
                if exam is None:
                    raise NotFoundError(resource="exam", resource_id=str(exam_id))
                if exam.student_id != session.user_id:
                    raise PermissionDeniedError(
                        message="You can only request writers for your own exams",
                        context={"exam_id": str(exam_id)},
                    )

                writer = await db.get(Profile, writer_id)
                if writer is None or writer.role is not UserRole.WRITER:
                    raise NotFoundError(resource="writer", resource_id=str(writer_id))

                pending_id = await db.scalar(
                    select(MatchRequest.id)
                    .where(
                        MatchRequest.student_id == session.user_id,
                        MatchRequest.writer_id == writer_id,
                        MatchRequest.status == MatchStatus.PENDING,
                    )
                    .limit(1)
                )
                if pending_id is not None:
                    raise DuplicatePendingError(
                        student_id=str(session.user_id), writer_id=str(writer_id)
                    )

                request = MatchRequest(
                    student_id=session.user_id,
                    writer_id=writer_id,
                    exam_id=exam_id,
                    status=MatchStatus.PENDING,
                    idempotency_key=idempotency_key,
                )
                try:
                    async with db.begin_nested():
                        db.add(request)
                except IntegrityError:
                    if idempotency_key:
                        existing = await self._find_by_idempotency_key(
                            db, session.user_id, idempotency_key
                        )
                        if existing is not None:
                            return self._replay(existing, writer_id, exam_id, idempotency_key)
                    logger.info(
                        "Pending-pair index rejected insert for %s → %s",
                        session.user_id,
                        writer_id,
                    )
                    raise DuplicatePendingError(
                        student_id=str(session.user_id), writer_id=str(writer_id)
                    )

            except ScribeConnectError:
                raise
            except Exception as e:
                logger.error("Failed to create match request: %s", str(e))
                raise DatabaseError(
                    message="Failed to send the request",
                    context={"writer_id": str(writer_id), "exam_id": str(exam_id), "error": str(e)},
                )

        logger.info(
            "Match request %s created: student=%s writer=%s exam=%s",
            request.id,
            session.user_id,
            writer_id,
            exam_id,
        )
        self._audit.track_notification_activity(
            session,
            "created",
            request.id,
            {"writer_id": str(writer_id), "exam_id": str(exam_id)},
        )
        self._audit.log_data_change(
            session,
            "match_requests",
            request.id,
            "insert",
            new_values={"status": MatchStatus.PENDING.value},
        )
        return request

    async def _find_by_idempotency_key(
        self, db: AsyncSession, student_id: uuid.UUID, key: str
    ) -> Optional[MatchRequest]:
        return await db.scalar(
            select(MatchRequest).where(
                MatchRequest.student_id == student_id,
                MatchRequest.idempotency_key == key,
            )
        )

    @staticmethod
    def _replay(
        existing: MatchRequest, writer_id: uuid.UUID, exam_id: uuid.UUID, key: str
    ) -> MatchRequest:
        """Returns the row created under `key`, provided it is the same request."""
        if existing.writer_id != writer_id or existing.exam_id != exam_id:
            raise ValidationError(
                message="This submission key was already used for a different request",
                field="idempotency_key",
                context={"request_id": str(existing.id)},
            )
        logger.info("Replayed request creation for key %s: %s", key, existing.id)
        return existing

    # ── Transition ────────────────────────────────────────────────────────

    async def transition(
        self,
        db: AsyncSession,
        session: UserSession,
        request_id: uuid.UUID,
        new_status: MatchStatus,
    ) -> MatchRequest:
        """
        Moves a request to `new_status` if the table allows it for the caller's role.

        The UPDATE is conditional on the status read, so a concurrent change
        by the other participant surfaces as InvalidTransitionError instead
        of being overwritten.

        Raises:
            NotFoundError: No such request
            PermissionDeniedError: Caller is not the participant for their role
            InvalidTransitionError: (role, current, new) not in the table
            SubmissionInProgressError: Same request already being transitioned
            DatabaseError: Store failure
        """
        role = session.effective_role

        async with self._guard.hold("transition", request_id):
            try:
                request = await db.get(MatchRequest, request_id)
                if request is None:
                    raise NotFoundError(resource="request", resource_id=str(request_id))

                participant = request.writer_id if role is UserRole.WRITER else request.student_id
                if participant != session.user_id:
                    raise PermissionDeniedError(
                        message="You are not a participant of this request",
                        context={"request_id": str(request_id)},
                    )

                current = request.status
                if not is_transition_allowed(role, current, new_status):
                    raise InvalidTransitionError(
                        current_status=current.value,
                        new_status=new_status.value,
                        role=role.value,
                        context={"request_id": str(request_id)},
                    )

                result = await db.execute(
                    update(MatchRequest)
                    .where(MatchRequest.id == request_id, MatchRequest.status == current)
                    .values(status=new_status)
                )
                if result.rowcount == 0:
                    await db.refresh(request)
                    raise InvalidTransitionError(
                        current_status=request.status.value,
                        new_status=new_status.value,
                        role=role.value,
                        context={"request_id": str(request_id), "concurrent_change": True},
                    )
                await db.refresh(request)

            except ScribeConnectError:
                raise
            except Exception as e:
                logger.error("Failed to update request %s: %s", request_id, str(e))
                raise DatabaseError(
                    message="Failed to update the request",
                    context={"request_id": str(request_id), "error": str(e)},
                )

        logger.info(
            "Request %s: %s → %s by %s %s",
            request_id,
            current.value,
            new_status.value,
            role.value,
            session.user_id,
        )
        self._audit.log_data_change(
            session,
            "match_requests",
            request_id,
            "status_update",
            old_values={"status": current.value},
            new_values={"status": new_status.value},
        )
        self._audit.track_notification_activity(session, new_status.value, request_id)
        return request

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_request(
        self,
        db: AsyncSession,
        session: UserSession,
        request_id: uuid.UUID,
    ) -> None:
        """Deletes one request; only its student or writer may do so."""
        async with self._guard.hold("delete", request_id):
            try:
                request = await db.get(MatchRequest, request_id)
                if request is None:
                    raise NotFoundError(resource="request", resource_id=str(request_id))
                self._require_participant(session, request)

                await db.delete(request)
                await db.flush()
            except ScribeConnectError:
                raise
            except Exception as e:
                logger.error("Failed to delete request %s: %s", request_id, str(e))
                raise DatabaseError(
                    message="Failed to delete the request",
                    context={"request_id": str(request_id), "error": str(e)},
                )

        logger.info("Request %s deleted by %s", request_id, session.user_id)
        self._audit.track_notification_activity(session, "deleted", request_id)
        self._audit.log_data_change(session, "match_requests", request_id, "delete")

    async def delete_requests(
        self,
        db: AsyncSession,
        session: UserSession,
        ids: List[uuid.UUID],
    ) -> int:
        """
        Deletes several requests at once ("delete selected").

        Ids that no longer exist are skipped. If any existing id belongs to
        someone else, nothing is deleted.

        Returns:
            Number of rows removed
        """
        unique_ids = list(dict.fromkeys(ids))

        async with self._guard.hold("bulk_delete", session.user_id):
            try:
                result = await db.execute(
                    select(MatchRequest).where(MatchRequest.id.in_(unique_ids))
                )
                found = list(result.scalars().all())
                for request in found:
                    self._require_participant(session, request)

                if not found:
                    return 0

                found_ids = [r.id for r in found]
                await db.execute(
                    delete(MatchRequest)
                    .where(MatchRequest.id.in_(found_ids))
                    .execution_options(synchronize_session="fetch")
                )
                await db.flush()
            except ScribeConnectError:
                raise
            except Exception as e:
                logger.error("Failed to bulk delete %d requests: %s", len(unique_ids), str(e))
                raise DatabaseError(
                    message="Failed to delete the selected requests",
                    context={"count": len(unique_ids), "error": str(e)},
                )

        logger.info("Bulk deleted %d requests for %s", len(found_ids), session.user_id)
        self._audit.log_data_change(
            session,
            "match_requests",
            ",".join(str(i) for i in found_ids),
            "bulk_delete",
        )
        return len(found_ids)

    async def delete_exam(
        self,
        db: AsyncSession,
        session: UserSession,
        exam_id: uuid.UUID,
    ) -> int:
        """
        Deletes an exam and every request referencing it.

        Two ordered statements in the caller's transaction: dependents first,
        then the exam. If the second fails, the whole transaction rolls back.

        Returns:
            Number of match requests removed with the exam
        """
        async with self._guard.hold("delete_exam", exam_id):
            try:
                exam = await db.get(ExamRequest, exam_id)
                if exam is None:
                    raise NotFoundError(resource="exam", resource_id=str(exam_id))
                if exam.student_id != session.user_id:
                    raise PermissionDeniedError(
                        message="You can only delete your own exams",
                        context={"exam_id": str(exam_id)},
                    )

                dependent_ids = (
                    await db.execute(
                        select(MatchRequest.id).where(MatchRequest.exam_id == exam_id)
                    )
                ).scalars().all()
                await db.execute(
                    delete(MatchRequest)
                    .where(MatchRequest.exam_id == exam_id)
                    .execution_options(synchronize_session="fetch")
                )
                removed = len(dependent_ids)
                await db.delete(exam)
                await db.flush()
            except ScribeConnectError:
                raise
            except Exception as e:
                logger.error("Failed to delete exam %s: %s", exam_id, str(e))
                raise DatabaseError(
                    message="Failed to delete the exam",
                    context={"exam_id": str(exam_id), "error": str(e)},
                )

        logger.info("Exam %s deleted with %d dependent requests", exam_id, removed)
        self._audit.track_exam_activity(
            session, "deleted", exam_id, {"removed_requests": removed}
        )
        self._audit.log_data_change(session, "exam_info", exam_id, "delete")
        return removed

    @staticmethod
    def _require_participant(session: UserSession, request: MatchRequest) -> None:
        if session.user_id not in (request.student_id, request.writer_id):
            raise PermissionDeniedError(
                message="You can only delete requests you are part of",
                context={"request_id": str(request.id)},
            )


# Shared across requests so the duplicate-submission check spans them
submission_guard = InFlightGuard()
