"""Notification outbox model."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class NotificationLog(Base):
    """Queued candidate notifications; also used to avoid sending duplicates."""

    __tablename__ = "notification_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slot_id = Column(
        UUID(as_uuid=True),
        ForeignKey("interview_slots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(UUID(as_uuid=True), nullable=False)
    notification_type = Column(String(50), nullable=False)  # "assignment", "reminder_24h", ...
    payload = Column(JSON, default=dict)
    status = Column(String(20), default="queued", nullable=False)  # "queued" | "failed"
    detail = Column(Text, default="")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_notifications_slot_student_type", "slot_id", "student_id", "notification_type"),)
