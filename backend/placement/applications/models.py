"""Application and student profile records, limited to the fields the slot engine reads or writes."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class Application(Base):
    __tablename__ = "applications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(UUID(as_uuid=True), nullable=False)
    student_id = Column(UUID(as_uuid=True), nullable=False)
    match_score = Column(Float, default=0.0, nullable=False)  # 0-100, from resume matching
    current_status = Column(String(30), default="applied", nullable=False)
    # [{"status": "...", "updated_at": "...", "notes": "..."}]
    status_history = Column(JSON, default=list)
    applied_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_applications_job_status", "job_id", "current_status"),
        Index("idx_applications_student", "student_id"),
    )


class StudentProfile(Base):
    __tablename__ = "student_profiles"

    student_id = Column(UUID(as_uuid=True), primary_key=True)
    college_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    cgpa = Column(Float, nullable=True)
    backlogs = Column(Integer, default=0, nullable=False)
    course = Column(String(100), nullable=True)
    graduation_year = Column(Integer, nullable=True)
    skills = Column(JSON, default=list)
