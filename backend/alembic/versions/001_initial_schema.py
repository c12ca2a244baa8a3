"""Create profiles, exam_info, match_requests and activity_logs

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Initial schema plus the change-notification trigger on match_requests.
How:   notify_match_request_change() runs AFTER INSERT/UPDATE/DELETE on each
       row and calls pg_notify(<realtime channel>, json) with the row's id,
       participants and status. The channel name is read from settings so it
       matches what PostgresChangeFeed listens on.

Rollback: downgrade() drops everything (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from scribeconnect.config import settings

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION notify_match_request_change() RETURNS trigger AS $$
DECLARE
    rec match_requests;
BEGIN
    IF TG_OP = 'DELETE' THEN
        rec := OLD;
    ELSE
        rec := NEW;
    END IF;
    PERFORM pg_notify(
        '{channel}',
        json_build_object(
            'event', TG_OP,
            'id', rec.id,
            'student_id', rec.student_id,
            'writer_id', rec.writer_id,
            'status', rec.status
        )::text
    );
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

NOTIFY_TRIGGER = """
CREATE TRIGGER match_requests_notify
AFTER INSERT OR UPDATE OR DELETE ON match_requests
FOR EACH ROW EXECUTE FUNCTION notify_match_request_change();
"""


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment="Identity issued by the auth platform",
        ),
        sa.Column(
            "role",
            sa.String(20),
            nullable=False,
            comment="student, writer, or disabled (alias of student)",
        ),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("mobile", sa.String(15), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("district", sa.String(100), nullable=False),
        sa.Column("state", sa.String(100), nullable=False),
        sa.Column(
            "postal_code",
            sa.String(10),
            nullable=False,
            comment="6-digit PIN code used for writer matching",
        ),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("role IN ('student', 'writer', 'disabled')", name="ck_profiles_role"),
    )
    op.create_index("idx_profiles_postal_code_role", "profiles", ["postal_code", "role"])

    op.create_table(
        "exam_info",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "student_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id"),
            nullable=False,
            comment="Owning student",
        ),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column(
            "exam_name",
            sa.String(200),
            nullable=False,
            comment="Exam type (e.g. CAT); the matcher's experience key",
        ),
        sa.Column("qualification_required", sa.String(200), nullable=True),
        sa.Column("center", sa.String(255), nullable=True),
        sa.Column("postal_code", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'open'")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_exam_info_student_id", "exam_info", ["student_id"])
    op.create_index("idx_exam_info_exam_name", "exam_info", ["exam_name"])

    # exam_id has no ON DELETE CASCADE: dependents are removed explicitly first
    op.create_table(
        "match_requests",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("writer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("exam_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("exam_info.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'completed', 'cancelled')",
            name="ck_match_requests_status",
        ),
    )
    op.create_index(
        "idx_match_requests_student_created",
        "match_requests",
        ["student_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "idx_match_requests_writer_created",
        "match_requests",
        ["writer_id", sa.text("created_at DESC")],
    )
    op.create_index("idx_match_requests_exam_id", "match_requests", ["exam_id"])
    op.create_index(
        "uq_match_requests_pending_pair",
        "match_requests",
        ["student_id", "writer_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        "uq_match_requests_idempotency",
        "match_requests",
        ["student_id", "idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )

    op.create_table(
        "activity_logs",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("session_id", sa.String(64), nullable=True),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("page_url", sa.String(500), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_activity_logs_user_created",
        "activity_logs",
        ["user_id", sa.text("created_at DESC")],
    )
    op.create_index("idx_activity_logs_session_id", "activity_logs", ["session_id"])

    op.execute(NOTIFY_FUNCTION.format(channel=settings.realtime_channel))
    op.execute(NOTIFY_TRIGGER)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS match_requests_notify ON match_requests")
    op.execute("DROP FUNCTION IF EXISTS notify_match_request_change()")

    op.drop_index("idx_activity_logs_session_id", table_name="activity_logs")
    op.drop_index("idx_activity_logs_user_created", table_name="activity_logs")
    op.drop_table("activity_logs")

    op.drop_index("uq_match_requests_idempotency", table_name="match_requests")
    op.drop_index("uq_match_requests_pending_pair", table_name="match_requests")
    op.drop_index("idx_match_requests_exam_id", table_name="match_requests")
    op.drop_index("idx_match_requests_writer_created", table_name="match_requests")
    op.drop_index("idx_match_requests_student_created", table_name="match_requests")
    op.drop_table("match_requests")

    op.drop_index("idx_exam_info_exam_name", table_name="exam_info")
    op.drop_index("idx_exam_info_student_id", table_name="exam_info")
    op.drop_table("exam_info")

    op.drop_index("idx_profiles_postal_code_role", table_name="profiles")
    op.drop_table("profiles")
