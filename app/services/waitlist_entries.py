# app/services/waitlist_entries.py
"""
Joining, listing and withdrawing waitlist entries.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List

from app.crud.crud_waitlist_entry import WaitlistStore
from app.crud.crud_waitlist_event import WaitlistAuditLog
from app.db.types import utcnow
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.waitlist import WaitlistEntryCreate, WaitlistStatus, ACTIVE_STATUSES
from app.services.offer_release import OfferSnapshot, ReleasedSlot

logger = logging.getLogger(__name__)


@dataclass
class JoinResult:
    entry: WaitlistEntry
    already_joined: bool = False


@dataclass
class CancelResult:
    status: str  # cancelled, not_found, conflict
    entry_id: str
    released_slot: Optional[ReleasedSlot] = None
    message: Optional[str] = None


class WaitlistEntryService:
    def __init__(self, store: WaitlistStore, audit: WaitlistAuditLog):
        self.store = store
        self.audit = audit

    def add_to_waitlist(
        self, *, salon_id: str, obj_in: WaitlistEntryCreate, channel: str = "operator"
    ) -> JoinResult:
        """Create a waiting entry, or return the customer's existing active one."""
        existing = self.store.find_active_duplicate(salon_id=salon_id, obj_in=obj_in)
        if existing:
            logger.info(f"Customer already on waitlist as {existing.id} for salon {salon_id}")
            return JoinResult(entry=existing, already_joined=True)

        entry = self.store.create(salon_id=salon_id, obj_in=obj_in)
        self.audit.log_event(
            salon_id=salon_id,
            waitlist_entry_id=entry.id,
            reason="entry_created",
            to_status=WaitlistStatus.WAITING.value,
            channel=channel,
            metadata={
                "service_id": entry.service_id,
                "employee_id": entry.employee_id,
                "preferred_date": entry.preferred_date.isoformat(),
            },
        )
        self.store.db.refresh(entry)
        return JoinResult(entry=entry)

    def list_entries(
        self, *, salon_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[WaitlistEntry]:
        return self.store.list_entries(salon_id=salon_id, status=status, limit=limit)

    def get_entry(self, *, salon_id: str, entry_id: str) -> Optional[WaitlistEntry]:
        return self.store.get(salon_id=salon_id, entry_id=entry_id)

    def cancel_entry(
        self, *, salon_id: str, entry_id: str, reason: Optional[str] = None
    ) -> CancelResult:
        """
        Withdraw an entry. Terminal.

        If the entry was holding an offer, its slot is handed back so it
        can be offered to somebody else.
        """
        entry = self.store.get(salon_id=salon_id, entry_id=entry_id)
        if entry is None:
            return CancelResult("not_found", entry_id, message="Waitlist entry not found")

        from_status = entry.status
        if from_status not in ACTIVE_STATUSES:
            return CancelResult("conflict", entry_id, message=f"Waitlist entry is already {from_status}")

        offer = OfferSnapshot.from_entry(entry) if from_status == WaitlistStatus.NOTIFIED.value else None

        if not self.store.mark_cancelled(
            entry_id,
            salon_id=salon_id,
            expected_status=from_status,
            reason=reason,
            now=utcnow(),
        ):
            return CancelResult(
                "conflict", entry_id, message="Waitlist entry changed, please retry"
            )

        self.audit.log_event(
            salon_id=salon_id,
            waitlist_entry_id=entry_id,
            reason="entry_cancelled",
            from_status=from_status,
            to_status=WaitlistStatus.CANCELLED.value,
            channel="operator",
            metadata={"reason": reason, "had_offer": offer is not None},
        )
        logger.info(f"Cancelled waitlist entry {entry_id} (was {from_status})")
        return CancelResult(
            "cancelled",
            entry_id,
            released_slot=offer.released_slot() if offer else None,
        )
