# app/services/offer_issuer.py
"""
Issues time-boxed waitlist offers.

An offer binds one 'waiting' entry to one calendar slot. The slot is
rechecked with the calendar at issuance time, the entry moves to
'notified' through a conditional update, and the claim links go out
through the notifier. A delivery failure leaves the offer issued.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, date
from typing import Optional, List

from app.core.config import settings
from app.crud.crud_waitlist_entry import WaitlistStore
from app.crud.crud_waitlist_event import WaitlistAuditLog
from app.db.types import as_utc, utcnow
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.waitlist import IssueOutcome, OfferTrigger, WaitlistStatus
from app.services.calendar_client import Calendar
from app.services.notifier import Notifier, Contact, OFFER_TEMPLATE
from app.utils.waitlist import (
    generate_offer_token,
    build_claim_links,
    build_slot_key,
    employee_matches,
    slot_fits_window,
    offer_expiry,
)

logger = logging.getLogger(__name__)

PENDING_OFFER_MESSAGE = "A pending offer already exists"


@dataclass
class OfferIssueResult:
    outcome: IssueOutcome
    entry_id: str
    offer_token: Optional[str] = None
    notified: bool = False
    expires_at: Optional[datetime] = None
    message: Optional[str] = None

    @property
    def issued(self) -> bool:
        return self.outcome == IssueOutcome.ISSUED


def format_slot_label(slot_start: datetime) -> str:
    return slot_start.strftime("on %a %d %b at %H:%M")


class OfferIssuer:
    def __init__(
        self,
        store: WaitlistStore,
        calendar: Calendar,
        notifier: Notifier,
        audit: WaitlistAuditLog,
    ):
        self.store = store
        self.calendar = calendar
        self.notifier = notifier
        self.audit = audit

    def select_candidates(
        self,
        *,
        salon_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
        employee_id: Optional[str] = None,
        on_date: Optional[date] = None,
    ) -> List[WaitlistEntry]:
        """
        Entries eligible for a freed slot, oldest first.

        Entries whose preferred window does not contain the slot are
        excluded outright.
        """
        candidates = self.store.get_waiting_candidates(
            salon_id=salon_id,
            service_id=service_id,
            preferred_date=on_date or slot_start.date(),
            employee_id=employee_id,
            now=utcnow(),
        )
        return [
            entry
            for entry in candidates
            if employee_matches(entry.employee_id, employee_id)
            and slot_fits_window(entry, slot_start, slot_end)
        ]

    def issue_offer(
        self,
        *,
        salon_id: str,
        entry_id: str,
        slot_start: datetime,
        slot_end: datetime,
        trigger: OfferTrigger,
        employee_id: Optional[str] = None,
        channel: str = "operator",
    ) -> OfferIssueResult:
        """
        Move a waiting entry to 'notified' with a fresh offer for the slot.

        Expected failures come back as the result's outcome. Calendar
        timeouts raise UpstreamFailure before anything is written.
        """
        slot_start, slot_end = as_utc(slot_start), as_utc(slot_end)
        if slot_end <= slot_start:
            return OfferIssueResult(
                IssueOutcome.INVALID_SLOT, entry_id, message="slot_end must be after slot_start"
            )

        entry = self.store.get(salon_id=salon_id, entry_id=entry_id)
        if entry is None:
            return OfferIssueResult(IssueOutcome.NOT_FOUND, entry_id, message="Waitlist entry not found")

        if entry.status == WaitlistStatus.NOTIFIED.value:
            return OfferIssueResult(IssueOutcome.CONFLICT, entry_id, message=PENDING_OFFER_MESSAGE)
        if entry.status != WaitlistStatus.WAITING.value:
            return OfferIssueResult(
                IssueOutcome.CONFLICT, entry_id, message=f"Waitlist entry is {entry.status}"
            )

        offer_employee_id = employee_id or entry.employee_id
        slot_key = build_slot_key(salon_id, offer_employee_id, slot_start)
        if self.store.has_pending_offer_for_slot(slot_key=slot_key):
            return OfferIssueResult(
                IssueOutcome.CONFLICT, entry_id, message="Slot already has a pending offer"
            )

        # Read what the notification needs before the update expires the instance.
        contact = Contact.from_entry(entry)
        service_id = entry.service_id
        attempt = (entry.offer_attempt or 0) + 1

        if not self.calendar.is_slot_free(
            salon_id=salon_id,
            service_id=service_id,
            slot_start=slot_start,
            slot_end=slot_end,
            employee_id=offer_employee_id,
        ):
            logger.info(f"Slot {slot_key} no longer free, not offering to {entry_id}")
            return OfferIssueResult(
                IssueOutcome.SLOT_UNAVAILABLE, entry_id, message="Slot is no longer available"
            )

        now = utcnow()
        expires_at = offer_expiry(now)
        token, token_hash = generate_offer_token()
        trigger_value = OfferTrigger(trigger).value

        written = self.store.mark_notified(
            entry_id,
            salon_id=salon_id,
            offer={
                "offer_token_hash": token_hash,
                "offer_slot_start": slot_start,
                "offer_slot_end": slot_end,
                "offer_employee_id": offer_employee_id,
                "offer_slot_key": slot_key,
                "offer_trigger": trigger_value,
                "offer_from_status": WaitlistStatus.WAITING.value,
                "offer_attempt": attempt,
                "notified_at": now,
                "expires_at": expires_at,
                "claim_started_at": None,
                "reminder_token_hash": None,
                "reminder_sent_at": None,
            },
        )
        if not written:
            logger.info(f"Lost race issuing offer to waitlist entry {entry_id}")
            return OfferIssueResult(IssueOutcome.CONFLICT, entry_id, message=PENDING_OFFER_MESSAGE)

        notified = self._deliver(contact, token, slot_start, entry_id)

        self.audit.log_event(
            salon_id=salon_id,
            waitlist_entry_id=entry_id,
            reason="offer_created",
            from_status=WaitlistStatus.WAITING.value,
            to_status=WaitlistStatus.NOTIFIED.value,
            channel=channel,
            metadata={
                "trigger": trigger_value,
                "slot_start": slot_start.isoformat(),
                "slot_end": slot_end.isoformat(),
                "employee_id": offer_employee_id,
                "expires_at": expires_at.isoformat(),
                "attempt": attempt,
                "notified": notified,
            },
        )
        logger.info(
            f"Issued waitlist offer to {entry_id} for {slot_key} "
            f"(trigger={trigger_value}, notified={notified})"
        )
        return OfferIssueResult(
            IssueOutcome.ISSUED,
            entry_id,
            offer_token=token,
            notified=notified,
            expires_at=expires_at,
        )

    def _deliver(self, contact: Contact, token: str, slot_start: datetime, entry_id: str) -> bool:
        context = {
            **build_claim_links(token),
            "slot_label": format_slot_label(slot_start),
            "slot_start": slot_start.isoformat(),
            "expires_in_minutes": settings.WAITLIST_OFFER_WINDOW_MINUTES,
        }
        try:
            return bool(self.notifier.send(contact, OFFER_TEMPLATE, context))
        except Exception as e:
            logger.error(f"Notifier failed for waitlist entry {entry_id}: {e}", exc_info=True)
            return False
