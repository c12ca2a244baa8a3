"""
ScribeConnect Backend: ExamRequest SQLAlchemy Model
====================================================

What:  ORM model for the `exam_info` table: an exam a student needs a writer for.
Who:   Written by ExamService; deleted by RequestLifecycleController.delete_exam;
       joined by the matcher's experience query and by the enrichment step.

Deletion:
    match_requests.exam_id references this table WITHOUT ON DELETE CASCADE.
    The lifecycle controller removes dependent match requests first, then
    the exam, as two ordered statements.
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scribeconnect.database import Base


class ExamRequest(Base):
    """
    An exam created by a student.

    The student's "current" exam is a client-side selection, not a column.
    """

    __tablename__ = "exam_info"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id"),
        nullable=False,
        comment="Owning student",
    )

    exam_date: Mapped[date | None] = mapped_column("date", Date, nullable=True)

    exam_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Exam type (e.g. CAT); the matcher's experience key",
    )

    qualification_required: Mapped[str | None] = mapped_column(String(200), nullable=True)
    center: Mapped[str | None] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="open",
        server_default=text("'open'"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_exam_info_student_id", "student_id"),
        Index("idx_exam_info_exam_name", "exam_name"),
    )

    def __repr__(self) -> str:
        return f"<ExamRequest(id={self.id}, exam_name='{self.exam_name}', status='{self.status}')>"
