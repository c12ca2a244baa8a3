"""
ScribeConnect Backend: Profile Schemas
=======================================

What:  Pydantic models for registration, profile updates, and profile responses.
How:   Field constraints mirror the registration form rules, so an invalid
       form never reaches the database:
           name, district, state  ≥ 2 characters (after trimming)
           email                   something@something.tld
           mobile                  exactly 10 digits
           age                     16 to 100
           postal_code             exactly 6 digits (Indian PIN code)
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from scribeconnect.models.profile import UserRole

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
MOBILE_PATTERN = r"^\d{10}$"
POSTAL_CODE_PATTERN = r"^\d{6}$"


def _at_least_two_chars(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    stripped = value.strip()
    if len(stripped) < 2:
        raise ValueError("must be at least 2 characters long")
    return stripped


class ProfileCreate(BaseModel):
    """
    What:  Registration payload. The id comes from the authenticated identity,
           never from the body.
    """
    role: UserRole = Field(description="student, writer, or disabled")
    name: str = Field(description="Full name")
    age: int = Field(ge=16, le=100, description="Age between 16 and 100")
    gender: Optional[str] = Field(default=None, max_length=20)
    mobile: str = Field(pattern=MOBILE_PATTERN, description="10-digit mobile number")
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    district: str
    state: str
    postal_code: str = Field(pattern=POSTAL_CODE_PATTERN, description="6-digit PIN code")

    @field_validator("name", "district", "state")
    @classmethod
    def validate_min_length(cls, v: str) -> str:
        return _at_least_two_chars(v)


class ProfileUpdate(BaseModel):
    """Partial update of the caller's own profile. Role and verification are not editable."""
    name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=16, le=100)
    gender: Optional[str] = Field(default=None, max_length=20)
    mobile: Optional[str] = Field(default=None, pattern=MOBILE_PATTERN)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    district: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, pattern=POSTAL_CODE_PATTERN)

    @field_validator("name", "district", "state")
    @classmethod
    def validate_min_length(cls, v: Optional[str]) -> Optional[str]:
        return _at_least_two_chars(v)


class ProfileResponse(BaseModel):
    id: uuid.UUID
    role: UserRole
    name: str
    age: Optional[int] = None
    gender: Optional[str] = None
    mobile: str
    email: str
    district: str
    state: str
    postal_code: str
    verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ContactInfo(BaseModel):
    """
    What:  The counterpart's contact details shown on a match request.
    Only name, mobile and email are ever exposed to the other party.
    """
    name: str
    mobile: Optional[str] = None
    email: Optional[str] = None

    model_config = {"from_attributes": True}


class CandidateResponse(BaseModel):
    """
    What:  One writer returned by the matcher.
    Who:   GET /api/exams/{id}/candidates, experienced writers first.
    """
    id: uuid.UUID
    name: str
    age: Optional[int] = None
    gender: Optional[str] = None
    district: str
    state: str
    postal_code: str
    verified: bool
    has_experience: bool = Field(
        description="True if the writer has completed assistance for an exam with the same name"
    )
