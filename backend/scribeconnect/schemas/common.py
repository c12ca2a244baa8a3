"""
ScribeConnect Backend: Shared Schemas
======================================

What:  Error envelope, health check, and client audit event models.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "duplicate_pending",
            "message": "You already have a pending request to this writer. ...",
            "details": {"writer_id": "..."},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    realtime: str = Field(description="Change feed: listening, idle, unavailable")
    active_subscriptions: int = Field(description="Open realtime bridges")
    uptime_seconds: float = Field(description="Seconds since service started")


class AuditEventCreate(BaseModel):
    """
    What:  An event reported by the browser (page view, form submit, client error).
    Who:   POST /api/audit/events; tagged server-side with user and session ids.
    """
    category: Literal["navigation", "form_submission", "error", "activity"]
    event_type: str = Field(min_length=1, max_length=100, description="e.g. page_view, register_form")
    details: Optional[Dict[str, Any]] = None
    page_url: Optional[str] = Field(default=None, max_length=500)
    success: Optional[bool] = None
    severity: Optional[Literal["low", "medium", "high", "critical"]] = None
    error_message: Optional[str] = Field(default=None, max_length=2000)


class AuditAccepted(BaseModel):
    accepted: bool = True
    session_id: str
