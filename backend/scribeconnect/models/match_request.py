"""
ScribeConnect Backend: MatchRequest SQLAlchemy Model
=====================================================

What:  ORM model for the `match_requests` table: one student's ask to one
       writer for one exam (shown to both parties as a "notification").
Who:   Written by RequestLifecycleController; read by the matcher,
       NotificationService and, through the row trigger, the change feed.

Status:
    pending  → accepted | rejected | cancelled
    accepted → completed | rejected | cancelled
    rejected, cancelled → no further change (student creates a new row)
    completed → terminal

    The allowed moves per role live in services/lifecycle_service.py.

Constraints:
    uq_match_requests_pending_pair: partial unique index on
    (student_id, writer_id) WHERE status = 'pending'. At most one pending
    request per pair, enforced by the store even when two inserts race.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from scribeconnect.database import Base


class MatchStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchRequest(Base):
    """A request from a student to a writer for a specific exam."""

    __tablename__ = "match_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    writer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exam_info.id"), nullable=False
    )

    status: Mapped[MatchStatus] = mapped_column(
        Enum(
            MatchStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=MatchStatus.PENDING,
        server_default=text("'pending'"),
    )

    # What: Client-supplied key making request creation safe to resubmit
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_match_requests_student_created", "student_id", "created_at"),
        Index("idx_match_requests_writer_created", "writer_id", "created_at"),
        Index("idx_match_requests_exam_id", "exam_id"),
        Index(
            "uq_match_requests_pending_pair",
            "student_id",
            "writer_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index(
            "uq_match_requests_idempotency",
            "student_id",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
            sqlite_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<MatchRequest(id={self.id}, student_id={self.student_id}, "
            f"writer_id={self.writer_id}, status='{self.status}')>"
        )
