"""
ScribeConnect Backend: Match Request Schemas
=============================================

What:  Request/response models for match requests ("notifications").
Who:   /api/requests routes and the /ws/notifications push payload.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from scribeconnect.models.match_request import MatchStatus
from scribeconnect.schemas.exam import ExamResponse
from scribeconnect.schemas.profile import ContactInfo


class MatchRequestCreate(BaseModel):
    writer_id: uuid.UUID = Field(description="Writer the student is asking for help")
    exam_id: uuid.UUID = Field(description="Exam the help is for")
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Client-generated key; resubmitting the same key returns the original request",
    )


class StatusUpdate(BaseModel):
    status: MatchStatus = Field(description="Target status")


class BulkDeleteRequest(BaseModel):
    ids: List[uuid.UUID] = Field(min_length=1, max_length=200)


class DeleteResult(BaseModel):
    deleted: int = Field(description="Number of rows removed")


class MatchRequestResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    writer_id: uuid.UUID
    exam_id: uuid.UUID
    status: MatchStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EnrichedMatchRequest(MatchRequestResponse):
    """
    What:  A match request joined with the counterpart's contact and the exam.

    counterpart is the writer when a student is reading and the student when
    a writer is reading. Either join may come back null; the row is kept.
    """
    counterpart: Optional[ContactInfo] = None
    exam: Optional[ExamResponse] = None


class NotificationPush(BaseModel):
    """Frame sent over /ws/notifications on every refresh."""
    realtime: bool = Field(description="False while the bridge is polling instead of listening")
    notifications: List[EnrichedMatchRequest]
