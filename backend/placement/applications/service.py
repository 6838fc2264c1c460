"""SQL adapters for the application pipeline and student profiles."""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ..slots.collaborators import (
    TERMINAL_APPLICATION_STATUSES,
    ApplicationStatus,
    ApplicationStatusError,
)
from ..slots.schemas import ApplicationRecord, CandidateProfile
from .models import Application, StudentProfile

logger = logging.getLogger(__name__)


def _record(app: Application) -> ApplicationRecord:
    return ApplicationRecord(
        application_id=app.id,
        student_id=app.student_id,
        match_score=app.match_score or 0.0,
        applied_at=app.applied_at,
        status=app.current_status,
    )


def change_status(db: Session, app: Application, new_status: ApplicationStatus, note: str = "") -> None:
    """Move an application and append the change to its status history."""
    if app.current_status in TERMINAL_APPLICATION_STATUSES:
        raise ApplicationStatusError(f"Application {app.id} is already {app.current_status}")
    now = datetime.now(UTC)
    app.current_status = new_status
    # Reassign so the JSON column is flagged dirty.
    app.status_history = [
        *(app.status_history or []),
        {"status": str(new_status), "updated_at": now.isoformat(), "notes": note},
    ]
    app.updated_at = now


class SqlApplicationGateway:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def count_applied(self, job_id: UUID) -> int:
        with self._session_factory() as db:
            return (
                db.query(Application)
                .filter(Application.job_id == job_id, Application.current_status == ApplicationStatus.APPLIED)
                .count()
            )

    def find_applied(self, job_id: UUID) -> list[ApplicationRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(Application)
                .filter(Application.job_id == job_id, Application.current_status == ApplicationStatus.APPLIED)
                .order_by(Application.applied_at.asc())
                .all()
            )
            return [_record(r) for r in rows]

    def find_application(self, job_id: UUID, student_id: UUID) -> ApplicationRecord | None:
        with self._session_factory() as db:
            app = (
                db.query(Application)
                .filter(Application.job_id == job_id, Application.student_id == student_id)
                .order_by(Application.applied_at.desc())
                .first()
            )
            return _record(app) if app else None

    def update_status(self, application_id: UUID, new_status: ApplicationStatus, note: str) -> None:
        with self._session_factory() as db:
            app = db.query(Application).filter(Application.id == application_id).first()
            if not app:
                raise ApplicationStatusError(f"Application {application_id} not found")
            change_status(db, app, new_status, note)
            db.commit()
        logger.info("Application %s -> %s (%s)", application_id, new_status, note)


class SqlProfileLookup:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_profile(self, student_id: UUID) -> CandidateProfile | None:
        with self._session_factory() as db:
            row = db.query(StudentProfile).filter(StudentProfile.student_id == student_id).first()
            if not row:
                return None
            return CandidateProfile(
                student_id=row.student_id,
                college_id=row.college_id,
                cgpa=row.cgpa,
                backlogs=row.backlogs or 0,
                courses=[row.course] if row.course else [],
                graduation_year=row.graduation_year,
                skills=row.skills or [],
            )
