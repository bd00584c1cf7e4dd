# app/services/claim_processor.py
"""
Resolves customer responses to waitlist offers.

The offer token is the only credential. A token resolves to an outcome
exactly once; afterwards its hash is cleared from the entry and any repeat
call comes back 'invalid'. Accepting takes a short claim lock on the entry
before asking the calendar to create the booking, so the conversion runs
at most once per token even under concurrent clicks.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import UpstreamFailure
from app.crud.crud_waitlist_entry import WaitlistStore
from app.crud.crud_waitlist_event import WaitlistAuditLog
from app.db.types import utcnow
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.waitlist import ClaimAction, ClaimStatus, WaitlistStatus
from app.services.calendar_client import Calendar
from app.services.offer_release import OfferSnapshot, ReleasedSlot, lapse_offer, no_live_claim
from app.utils.waitlist import hash_offer_token, compute_cooldown

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    status: ClaimStatus
    booking_id: Optional[str] = None
    entry_id: Optional[str] = None
    released_slot: Optional[ReleasedSlot] = None


class ClaimProcessor:
    def __init__(self, store: WaitlistStore, calendar: Calendar, audit: WaitlistAuditLog):
        self.store = store
        self.calendar = calendar
        self.audit = audit

    def resolve_claim(
        self,
        *,
        offer_token: str,
        action: ClaimAction,
        channel: str = "link",
    ) -> ClaimResult:
        token_hash = hash_offer_token(offer_token)
        entry = self.store.get_by_token_hash(token_hash=token_hash)
        if entry is None:
            return ClaimResult(ClaimStatus.INVALID)

        offer = OfferSnapshot.from_entry(entry)
        now = utcnow()

        if offer.expires_at <= now:
            # Lapsed offers never book, even if another writer cleans up first.
            lapse_offer(self.store, self.audit, offer, now=now, channel=channel, requeue_only=True)
            return ClaimResult(ClaimStatus.EXPIRED, entry_id=offer.entry_id)

        if ClaimAction(action) == ClaimAction.DECLINE:
            return self._decline(offer, channel=channel, now=now)
        return self._accept(offer, channel=channel, now=now)

    def _decline(self, offer: OfferSnapshot, *, channel: str, now) -> ClaimResult:
        decline_count = offer.decline_count + 1
        cooldown_until, passive = compute_cooldown(decline_count, now)

        declined = self.store.release_offer(
            offer.entry_id,
            token_hash=offer.token_hash,
            to_status=WaitlistStatus.WAITING.value,
            channel=channel,
            now=now,
            cooldown_until=cooldown_until,
            cooldown_reason="declined",
            decline_count=decline_count,
            conditions=[no_live_claim(now)],
        )
        if not declined:
            return ClaimResult(ClaimStatus.INVALID, entry_id=offer.entry_id)

        self.audit.log_event(
            salon_id=offer.salon_id,
            waitlist_entry_id=offer.entry_id,
            reason="offer_declined",
            from_status=WaitlistStatus.NOTIFIED.value,
            to_status=WaitlistStatus.WAITING.value,
            channel=channel,
            metadata={
                "slot_start": offer.slot_start.isoformat(),
                "slot_end": offer.slot_end.isoformat(),
                "decline_count": decline_count,
                "cooldown_until": cooldown_until.isoformat(),
                "passive_cooldown": passive,
            },
        )
        logger.info(f"Waitlist offer on {offer.entry_id} declined via {channel}")
        return ClaimResult(
            ClaimStatus.DECLINED,
            entry_id=offer.entry_id,
            released_slot=offer.released_slot(),
        )

    def _accept(self, offer: OfferSnapshot, *, channel: str, now) -> ClaimResult:
        if not self.store.begin_claim(offer.entry_id, token_hash=offer.token_hash, now=now):
            # Someone else holds the claim or already resolved the offer.
            return ClaimResult(ClaimStatus.INVALID, entry_id=offer.entry_id)

        try:
            conversion = self.calendar.convert_offer_to_booking(
                salon_id=offer.salon_id,
                service_id=offer.service_id,
                slot_start=offer.slot_start,
                slot_end=offer.slot_end,
                employee_id=offer.employee_id,
                customer={
                    "customer_id": offer.customer_id,
                    "name": offer.customer_name,
                    "email": offer.customer_email,
                    "phone": offer.customer_phone,
                },
                idempotency_key=offer.token_hash,
            )
        except UpstreamFailure:
            self.store.abort_claim(offer.entry_id, token_hash=offer.token_hash, started_at=now)
            logger.warning(f"Calendar unavailable, claim on {offer.entry_id} left pending")
            raise
        except Exception:
            # No conversion result: the offer must stay claimable.
            self.store.abort_claim(offer.entry_id, token_hash=offer.token_hash, started_at=now)
            logger.error(f"Claim on {offer.entry_id} failed, offer left pending", exc_info=True)
            raise

        if not conversion.succeeded:
            return self._slot_lost(offer, reason=conversion.reason, channel=channel, now=now)

        booked = self.store.mark_booked(
            offer.entry_id,
            token_hash=offer.token_hash,
            booking_id=conversion.booking_id,
            channel=channel,
            now=utcnow(),
        )
        if not booked:
            logger.error(
                f"Booking {conversion.booking_id} created but waitlist entry {offer.entry_id} "
                f"changed state during the claim"
            )

        self.audit.log_event(
            salon_id=offer.salon_id,
            waitlist_entry_id=offer.entry_id,
            reason="offer_accepted",
            from_status=WaitlistStatus.NOTIFIED.value,
            to_status=WaitlistStatus.BOOKED.value,
            channel=channel,
            metadata={
                "booking_id": conversion.booking_id,
                "slot_start": offer.slot_start.isoformat(),
                "slot_end": offer.slot_end.isoformat(),
                "entry_updated": booked,
            },
        )
        logger.info(f"Waitlist offer on {offer.entry_id} accepted, booking {conversion.booking_id}")
        return ClaimResult(
            ClaimStatus.ACCEPTED, booking_id=conversion.booking_id, entry_id=offer.entry_id
        )

    def _slot_lost(self, offer: OfferSnapshot, *, reason: Optional[str], channel: str, now) -> ClaimResult:
        """The calendar gave the slot away; the customer keeps their place without penalty."""
        self.store.release_offer(
            offer.entry_id,
            token_hash=offer.token_hash,
            to_status=WaitlistStatus.WAITING.value,
            channel=channel,
            now=utcnow(),
            conditions=[WaitlistEntry.claim_started_at == now],
        )
        self.audit.log_event(
            salon_id=offer.salon_id,
            waitlist_entry_id=offer.entry_id,
            reason="offer_slot_lost",
            from_status=WaitlistStatus.NOTIFIED.value,
            to_status=WaitlistStatus.WAITING.value,
            channel=channel,
            metadata={
                "reason": reason,
                "slot_start": offer.slot_start.isoformat(),
                "slot_end": offer.slot_end.isoformat(),
            },
        )
        logger.info(f"Slot for waitlist offer on {offer.entry_id} was taken: {reason}")
        return ClaimResult(ClaimStatus.EXPIRED, entry_id=offer.entry_id)
