"""Side effects of committed ledger changes on the application pipeline and notifications.

Nothing here touches the ledger. Collaborator failures are logged and
reported back; they never undo a committed seat change.
"""

import logging
from collections.abc import Callable
from typing import Any
from uuid import UUID

from .collaborators import (
    ApplicationGateway,
    ApplicationStatus,
    ApplicationStatusError,
    NotificationDispatcher,
    NotificationKind,
)
from .schemas import NotificationFailure, SlotResponse

logger = logging.getLogger(__name__)

FailureRecorder = Callable[[UUID, UUID, NotificationKind, dict[str, Any], str], None]


def slot_payload(slot: SlotResponse, time_slot: str | None = None) -> dict[str, Any]:
    """Notification payload describing the candidate's interview."""
    payload = {
        "slot_id": str(slot.id),
        "job_id": str(slot.job_id),
        "title": slot.title,
        "scheduled_date": slot.scheduled_date.isoformat(),
        "mode": str(slot.mode),
        "location": slot.location,
        "virtual_meeting_details": slot.virtual_meeting_details,
    }
    if time_slot:
        payload["time_slot"] = time_slot
    return payload


class SideEffects:
    def __init__(
        self,
        applications: ApplicationGateway,
        notifications: NotificationDispatcher,
        on_delivery_failure: FailureRecorder | None = None,
    ) -> None:
        self.applications = applications
        self.notifications = notifications
        self._on_delivery_failure = on_delivery_failure

    def update_application(self, application_id: UUID | None, status: ApplicationStatus, note: str) -> None:
        """Move the application; ``ApplicationStatusError`` propagates to the caller."""
        if application_id is None:
            return
        self.applications.update_status(application_id, status, note)

    def try_update_application(self, application_id: UUID | None, status: ApplicationStatus, note: str) -> bool:
        try:
            self.update_application(application_id, status, note)
        except ApplicationStatusError as exc:
            logger.warning("Application %s not moved to %s: %s", application_id, status, exc)
            return False
        except Exception:
            logger.exception("Application %s update to %s failed", application_id, status)
            return False
        return True

    def notify(
        self,
        slot: SlotResponse,
        student_id: UUID,
        kind: NotificationKind,
        time_slot: str | None = None,
        **extra: Any,
    ) -> NotificationFailure | None:
        payload = slot_payload(slot, time_slot) | extra
        try:
            self.notifications.notify(student_id, kind, payload)
        except Exception as exc:
            logger.exception("Failed to dispatch %s notification to %s", kind, student_id)
            if self._on_delivery_failure is not None:
                try:
                    self._on_delivery_failure(slot.id, student_id, kind, payload, str(exc))
                except Exception:
                    logger.exception("Could not record %s delivery failure for %s", kind, student_id)
            return NotificationFailure(student_id=student_id, kind=str(kind), error=str(exc))
        return None
