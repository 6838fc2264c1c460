"""Interview slots, seats, waitlist, and the application/profile records they read.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

slot_status = sa.Enum("draft", "published", "in_progress", "completed", "cancelled", name="slotstatus")
candidate_status = sa.Enum("assigned", "confirmed", "attended", "no_show", "cancelled", name="candidatestatus")
interview_mode = sa.Enum("physical", "virtual", "hybrid", name="interviewmode")


def upgrade() -> None:
    op.create_table(
        "interview_slots",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_id", UUID(as_uuid=True), nullable=False),
        sa.Column("recruiter_id", UUID(as_uuid=True), nullable=False),
        sa.Column("college_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("scheduled_date", sa.Date, nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("duration", sa.Integer, nullable=False),
        sa.Column("total_capacity", sa.Integer, nullable=False),
        sa.Column("available_slots", sa.Integer, nullable=False),
        sa.Column("mode", interview_mode, nullable=False),
        sa.Column("location", sa.JSON, nullable=True),
        sa.Column("virtual_meeting_details", sa.JSON, nullable=True),
        sa.Column("interviewers", sa.JSON, nullable=True),
        sa.Column("candidate_instructions", sa.JSON, nullable=True),
        sa.Column("eligibility_criteria", sa.JSON, nullable=False),
        sa.Column("auto_assignment_settings", sa.JSON, nullable=False),
        sa.Column("status", slot_status, nullable=False, server_default="draft"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("needs_reconciliation", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("reconciliation_note", sa.Text, nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        sa.Column("last_modified_by", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("idx_slots_job_status", "interview_slots", ["job_id", "status"])
    op.create_index("idx_slots_college_date", "interview_slots", ["college_id", "scheduled_date"])
    op.create_index("idx_slots_status_date", "interview_slots", ["status", "scheduled_date"])
    op.create_index("idx_slots_recruiter_status", "interview_slots", ["recruiter_id", "status"])

    op.create_table(
        "slot_assignments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "slot_id",
            UUID(as_uuid=True),
            sa.ForeignKey("interview_slots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("student_id", UUID(as_uuid=True), nullable=False),
        sa.Column("application_id", UUID(as_uuid=True), nullable=True),
        sa.Column("time_slot", sa.String(11), nullable=False),
        sa.Column("status", candidate_status, nullable=False, server_default="assigned"),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.UniqueConstraint("slot_id", "student_id", name="uq_assignment_slot_student"),
    )
    op.create_index("idx_assignments_student_status", "slot_assignments", ["student_id", "status"])

    op.create_table(
        "slot_waitlist_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "slot_id",
            UUID(as_uuid=True),
            sa.ForeignKey("interview_slots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("student_id", UUID(as_uuid=True), nullable=False),
        sa.Column("application_id", UUID(as_uuid=True), nullable=True),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("notes", sa.Text, nullable=True),
        sa.UniqueConstraint("slot_id", "student_id", name="uq_waitlist_slot_student"),
        sa.UniqueConstraint("slot_id", "priority", name="uq_waitlist_slot_priority"),
    )
    op.create_index("idx_waitlist_student", "slot_waitlist_entries", ["student_id"])

    op.create_table(
        "applications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_id", UUID(as_uuid=True), nullable=False),
        sa.Column("student_id", UUID(as_uuid=True), nullable=False),
        sa.Column("match_score", sa.Float, nullable=False, server_default="0"),
        sa.Column("current_status", sa.String(30), nullable=False, server_default="applied"),
        sa.Column("status_history", sa.JSON, nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_applications_job_status", "applications", ["job_id", "current_status"])
    op.create_index("idx_applications_student", "applications", ["student_id"])

    op.create_table(
        "student_profiles",
        sa.Column("student_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("college_id", UUID(as_uuid=True), nullable=False),
        sa.Column("cgpa", sa.Float, nullable=True),
        sa.Column("backlogs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("course", sa.String(100), nullable=True),
        sa.Column("graduation_year", sa.Integer, nullable=True),
        sa.Column("skills", sa.JSON, nullable=True),
    )
    op.create_index("ix_student_profiles_college_id", "student_profiles", ["college_id"])


def downgrade() -> None:
    op.drop_index("ix_student_profiles_college_id", table_name="student_profiles")
    op.drop_table("student_profiles")
    op.drop_index("idx_applications_student", table_name="applications")
    op.drop_index("idx_applications_job_status", table_name="applications")
    op.drop_table("applications")
    op.drop_index("idx_waitlist_student", table_name="slot_waitlist_entries")
    op.drop_table("slot_waitlist_entries")
    op.drop_index("idx_assignments_student_status", table_name="slot_assignments")
    op.drop_table("slot_assignments")
    op.drop_index("idx_slots_recruiter_status", table_name="interview_slots")
    op.drop_index("idx_slots_status_date", table_name="interview_slots")
    op.drop_index("idx_slots_college_date", table_name="interview_slots")
    op.drop_index("idx_slots_job_status", table_name="interview_slots")
    op.drop_table("interview_slots")
    interview_mode.drop(op.get_bind(), checkfirst=True)
    candidate_status.drop(op.get_bind(), checkfirst=True)
    slot_status.drop(op.get_bind(), checkfirst=True)
