"""
ScribeConnect Backend: Profile SQLAlchemy Model
================================================

What:  ORM model for the `profiles` table: one row per registered user.
Who:   Read by the session resolver, the writer matcher and the enrichment
       step; written by ProfileService at registration and by the owner.

Table Design:
    - id equals the identity issued by the external auth platform, so the
      primary key has no default; it is always supplied by the caller.
    - role is one of student, writer, disabled. `disabled` marks a student
      with a disability and behaves exactly like `student` everywhere.
    - (postal_code, role) index serves the matcher's candidate query.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scribeconnect.database import Base


class UserRole(str, enum.Enum):
    """Role chosen at registration."""

    STUDENT = "student"
    WRITER = "writer"
    DISABLED = "disabled"

    @property
    def effective(self) -> "UserRole":
        """Collapses the `disabled` alias onto `student`."""
        if self is UserRole.DISABLED:
            return UserRole.STUDENT
        return self


class Profile(Base):
    """
    A registered student or writer.

    Lifecycle:
        1. Inserted at registration with verified = False
        2. Updated only by its owner
        3. Never deleted by this service
    """

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        comment="Identity issued by the auth platform",
    )

    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            native_enum=False,
            length=20,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        comment="student, writer, or disabled (alias of student)",
    )

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    mobile: Mapped[str] = mapped_column(String(15), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    district: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)

    postal_code: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="6-digit PIN code used for writer matching",
    )

    verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_profiles_postal_code_role", "postal_code", "role"),
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, role='{self.role}', postal_code='{self.postal_code}')>"
