# app/crud/crud_waitlist_event.py
import logging
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.waitlist_lifecycle_event import WaitlistLifecycleEvent

logger = logging.getLogger(__name__)


class WaitlistAuditLog:
    """Write-only lifecycle trail for waitlist entries."""

    def __init__(self, db: Session):
        self.db = db

    def log_event(
        self,
        *,
        salon_id: str,
        waitlist_entry_id: str,
        reason: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        channel: str = "system",
        metadata: Optional[dict] = None,
    ) -> Optional[WaitlistLifecycleEvent]:
        """
        Record a lifecycle event.

        The transition it describes is already committed, so a failed audit
        write is logged and rolled back without being raised.
        """
        event = WaitlistLifecycleEvent(
            salon_id=salon_id,
            waitlist_entry_id=waitlist_entry_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            channel=channel,
            event_data=metadata or {},
        )
        try:
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Failed to write waitlist audit event {reason} for entry {waitlist_entry_id}: {e}"
            )
            return None
        return event

    def get_entry_events(self, *, waitlist_entry_id: str) -> List[WaitlistLifecycleEvent]:
        """All events for one entry, oldest first."""
        return (
            self.db.query(WaitlistLifecycleEvent)
            .filter(WaitlistLifecycleEvent.waitlist_entry_id == waitlist_entry_id)
            .order_by(WaitlistLifecycleEvent.created_at.asc())
            .all()
        )
