# app/services/offer_release.py
"""
Shared handling for offers that leave 'notified' without a booking.

Lazy expiry at claim time and the reconciliation sweep must apply the same
transition, so both go through lapse_offer().
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import or_

from app.core.config import settings
from app.crud.crud_waitlist_entry import WaitlistStore
from app.crud.crud_waitlist_event import WaitlistAuditLog
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.waitlist import WaitlistStatus
from app.utils.waitlist import compute_cooldown

logger = logging.getLogger(__name__)


@dataclass
class ReleasedSlot:
    """A calendar slot whose offer ended without a booking."""

    salon_id: str
    service_id: str
    slot_start: datetime
    slot_end: datetime
    employee_id: Optional[str] = None
    on_date: Optional[date] = None


@dataclass
class OfferSnapshot:
    """
    Plain copy of an entry holding an offer.

    Conditional updates commit and expire loaded instances, so services
    work from this copy instead of the ORM object.
    """

    entry_id: str
    salon_id: str
    service_id: str
    preferred_date: date
    customer_name: str
    customer_email: Optional[str]
    customer_phone: Optional[str]
    customer_id: Optional[str]
    token_hash: str
    slot_start: datetime
    slot_end: datetime
    employee_id: Optional[str]
    trigger: Optional[str]
    from_status: Optional[str]
    expires_at: datetime
    claim_started_at: Optional[datetime]
    decline_count: int

    @classmethod
    def from_entry(cls, entry: WaitlistEntry) -> "OfferSnapshot":
        return cls(
            entry_id=entry.id,
            salon_id=entry.salon_id,
            service_id=entry.service_id,
            preferred_date=entry.preferred_date,
            customer_name=entry.customer_name,
            customer_email=entry.customer_email,
            customer_phone=entry.customer_phone,
            customer_id=entry.customer_id,
            token_hash=entry.offer_token_hash,
            slot_start=entry.offer_slot_start,
            slot_end=entry.offer_slot_end,
            employee_id=entry.offer_employee_id,
            trigger=entry.offer_trigger,
            from_status=entry.offer_from_status,
            expires_at=entry.expires_at,
            claim_started_at=entry.claim_started_at,
            decline_count=entry.decline_count or 0,
        )

    def released_slot(self) -> ReleasedSlot:
        return ReleasedSlot(
            salon_id=self.salon_id,
            service_id=self.service_id,
            slot_start=self.slot_start,
            slot_end=self.slot_end,
            employee_id=self.employee_id,
            on_date=self.preferred_date,
        )


def claim_lock_cutoff(now: datetime) -> datetime:
    return now - timedelta(seconds=settings.WAITLIST_CLAIM_LOCK_SECONDS)


def no_live_claim(now: datetime):
    """Condition: nobody is mid-way through accepting the offer."""
    return or_(
        WaitlistEntry.claim_started_at.is_(None),
        WaitlistEntry.claim_started_at < claim_lock_cutoff(now),
    )


def lapse_offer(
    store: WaitlistStore,
    audit: WaitlistAuditLog,
    offer: OfferSnapshot,
    *,
    now: datetime,
    channel: str = "system",
    requeue_only: bool = False,
) -> bool:
    """
    Expire an unclaimed offer.

    The entry returns to the status it held before the offer (normally
    'waiting') with a timeout cooldown. If its preferred date has already
    passed there is nothing left to wait for, so it becomes 'expired',
    unless `requeue_only` is set. Claims on a lapsed offer always requeue;
    the stale-entry sweep expires the entry afterwards.

    Returns False when another writer resolved the offer first.
    """
    if offer.preferred_date < now.date() and not requeue_only:
        to_status = WaitlistStatus.EXPIRED.value
        cooldown_until, passive = None, False
    else:
        to_status = offer.from_status or WaitlistStatus.WAITING.value
        cooldown_until, passive = compute_cooldown(offer.decline_count + 1, now)

    released = store.release_offer(
        offer.entry_id,
        token_hash=offer.token_hash,
        to_status=to_status,
        channel=channel,
        now=now,
        cooldown_until=cooldown_until,
        cooldown_reason="timeout" if cooldown_until else None,
        decline_count=offer.decline_count + 1,
        conditions=[no_live_claim(now)],
    )
    if not released:
        logger.info(f"Offer on waitlist entry {offer.entry_id} already resolved, skipping expiry")
        return False

    audit.log_event(
        salon_id=offer.salon_id,
        waitlist_entry_id=offer.entry_id,
        reason="offer_expired",
        from_status=WaitlistStatus.NOTIFIED.value,
        to_status=to_status,
        channel=channel,
        metadata={
            "slot_start": offer.slot_start.isoformat(),
            "slot_end": offer.slot_end.isoformat(),
            "expires_at": offer.expires_at.isoformat(),
            "cooldown_until": cooldown_until.isoformat() if cooldown_until else None,
            "passive_cooldown": passive,
        },
    )
    logger.info(f"Expired waitlist offer on entry {offer.entry_id} -> {to_status}")
    return True
