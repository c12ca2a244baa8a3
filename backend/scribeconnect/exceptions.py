"""
ScribeConnect Backend: Custom Exception Hierarchy
==================================================

What:  Application-specific exceptions for each error scenario.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    ScribeConnectError (base)
    ├── ValidationError            → 400 Bad Request (client can fix)
    ├── AuthenticationError        → 401 Unauthorized (no identity)
    ├── PermissionDeniedError      → 403 Forbidden (not your record)
    ├── NotFoundError              → 404 Not Found
    ├── DuplicatePendingError      → 409 Conflict (pending request exists)
    ├── InvalidTransitionError     → 409 Conflict (status change not allowed)
    ├── SubmissionInProgressError  → 409 Conflict (same action outstanding)
    ├── RealtimeSubscriptionError  → never rendered; bridge falls back to polling
    └── DatabaseError              → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class ScribeConnectError(Exception):
    """
    Base exception for all ScribeConnect application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ScribeConnectError):
    """
    Raised when client input fails a business rule.

    When:    Registration field checks, duplicate profile, exam owned by someone else.
    HTTP:    400 Bad Request

    Schema-level problems (wrong types, missing fields) are still reported by
    FastAPI as 422; this class covers rules that need the database or the session.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(ScribeConnectError):
    """
    Raised when a request carries no usable identity.

    HTTP:    401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(ScribeConnectError):
    """
    Raised when the caller is authenticated but not allowed to act on a record.

    When:    Deleting another student's exam, transitioning a request you are
             not a participant of, a writer trying to create a request.
    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(ScribeConnectError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found

    SQLAlchemy returns None for missing records; services convert that None
    into this exception so routes stay free of lookup checks.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DuplicatePendingError(ScribeConnectError):
    """
    Raised when a student already has a pending request to the same writer.

    HTTP:    409 Conflict

    Raised both by the pre-insert read and when the partial unique index on
    (student_id, writer_id) WHERE status = 'pending' rejects a racing insert.
    """

    def __init__(
        self,
        student_id: Optional[str] = None,
        writer_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "You already have a pending request to this writer. "
            "Please wait for their response."
        )
        ctx = context or {}
        if student_id:
            ctx["student_id"] = student_id
        if writer_id:
            ctx["writer_id"] = writer_id
        super().__init__(message=message, context=ctx)


class InvalidTransitionError(ScribeConnectError):
    """
    Raised when a status change is not in the transition table for the caller's role.

    HTTP:    409 Conflict

    Example:
        A writer calling transition(id, 'completed') on a request that is still
        'pending' (it must be accepted first).
    """

    def __init__(
        self,
        current_status: str,
        new_status: str,
        role: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"A {role} cannot change a request from '{current_status}' to '{new_status}'"
        )
        ctx = context or {}
        ctx.update({"current_status": current_status, "new_status": new_status, "role": role})
        super().__init__(message=message, context=ctx)
        self.current_status = current_status
        self.new_status = new_status
        self.role = role


class SubmissionInProgressError(ScribeConnectError):
    """
    Raised when the same action is submitted again while the first is still running.

    HTTP:    409 Conflict
    """

    def __init__(
        self,
        action: str = "request",
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"A previous {action} is still being processed. Please wait."
        ctx = context or {}
        ctx["action"] = action
        super().__init__(message=message, context=ctx)


class RealtimeSubscriptionError(ScribeConnectError):
    """
    Raised by a ChangeFeed when the change subscription cannot be established.

    Never reaches a client: the realtime bridge catches it, disables realtime
    mode, and falls back to polling.
    """

    def __init__(
        self,
        message: str = "Realtime change subscription could not be established",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(ScribeConnectError):
    """
    Raised when database operations fail unexpectedly.

    When:    Connection lost mid-query, constraint violation, deadlock, etc.
    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. Detailed error
        info (SQL, constraint name) is logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
