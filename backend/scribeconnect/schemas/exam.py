"""
ScribeConnect Backend: Exam Schemas
====================================

What:  Request/response models for the student's exam records.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from scribeconnect.schemas.profile import POSTAL_CODE_PATTERN


class ExamCreate(BaseModel):
    exam_date: Optional[date] = Field(default=None, description="Exam date")
    exam_name: str = Field(min_length=1, max_length=200, description="Exam type, e.g. CAT")
    qualification_required: Optional[str] = Field(default=None, max_length=200)
    center: Optional[str] = Field(default=None, max_length=255)
    postal_code: str = Field(pattern=POSTAL_CODE_PATTERN, description="6-digit PIN of the exam center")

    @field_validator("exam_name")
    @classmethod
    def strip_exam_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("exam_name must not be blank")
        return stripped


class ExamResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    exam_date: Optional[date] = None
    exam_name: str
    qualification_required: Optional[str] = None
    center: Optional[str] = None
    postal_code: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
