# app/services/cancellation_coordinator.py
"""
Offers freed calendar slots to the waitlist.

One freed slot produces at most one offer. Candidates are tried oldest
first; an unavailable slot, a lost race or a calendar timeout on one
candidate moves on to the next.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from app.core.exceptions import UpstreamFailure
from app.db.types import utcnow
from app.schemas.waitlist import OfferTrigger, IssueOutcome
from app.services.calendar_client import Calendar
from app.services.offer_issuer import OfferIssuer
from app.services.offer_release import ReleasedSlot

logger = logging.getLogger(__name__)


@dataclass
class CancellationSummary:
    offers_issued: int = 0
    candidates_considered: int = 0
    errors: int = 0


class CancellationCoordinator:
    def __init__(self, issuer: OfferIssuer, calendar: Calendar):
        self.issuer = issuer
        self.calendar = calendar

    def on_booking_cancelled(
        self,
        *,
        salon_id: str,
        service_id: str,
        on_date: date,
        employee_id: Optional[str] = None,
        slot_start: Optional[datetime] = None,
        slot_end: Optional[datetime] = None,
        trigger: OfferTrigger = OfferTrigger.CANCELLATION,
    ) -> CancellationSummary:
        """
        Offer a freed slot to the first eligible waiting entry.

        Without explicit slot times the calendar is asked for a matching
        free slot. A calendar failure on that lookup is raised, since no
        candidate has been tried yet.
        """
        summary = CancellationSummary()

        if slot_start is None or slot_end is None:
            slot = self.calendar.find_matching_free_slot(
                salon_id=salon_id,
                service_id=service_id,
                on_date=on_date,
                employee_id=employee_id,
            )
            if slot is None:
                logger.info(f"No free slot for salon {salon_id} service {service_id} on {on_date}")
                return summary
            slot_start, slot_end = slot.start, slot.end
            employee_id = slot.employee_id or employee_id

        candidates = self.issuer.select_candidates(
            salon_id=salon_id,
            service_id=service_id,
            slot_start=slot_start,
            slot_end=slot_end,
            employee_id=employee_id,
            on_date=on_date,
        )

        for entry in candidates:
            entry_id = entry.id
            summary.candidates_considered += 1
            try:
                result = self.issuer.issue_offer(
                    salon_id=salon_id,
                    entry_id=entry_id,
                    slot_start=slot_start,
                    slot_end=slot_end,
                    trigger=trigger,
                    employee_id=employee_id,
                    channel="system",
                )
            except UpstreamFailure as e:
                summary.errors += 1
                logger.warning(f"Calendar failure offering slot to {entry_id}: {e}")
                continue

            if result.outcome == IssueOutcome.ISSUED:
                summary.offers_issued = 1
                break
            logger.info(f"Skipping waitlist candidate {entry_id}: {result.outcome.value}")

        logger.info(
            f"Cancellation for salon {salon_id} service {service_id} on {on_date}: "
            f"{summary.offers_issued} offer(s), {summary.candidates_considered} candidate(s)"
        )
        return summary

    def reoffer_released_slot(
        self,
        released: ReleasedSlot,
        *,
        trigger: OfferTrigger = OfferTrigger.LIFECYCLE_CHAIN,
    ) -> CancellationSummary:
        """Pass a slot freed by a decline or a lapsed offer to the next candidate."""
        if released.slot_start <= utcnow():
            return CancellationSummary()
        return self.on_booking_cancelled(
            salon_id=released.salon_id,
            service_id=released.service_id,
            on_date=released.on_date or released.slot_start.date(),
            employee_id=released.employee_id,
            slot_start=released.slot_start,
            slot_end=released.slot_end,
            trigger=trigger,
        )
