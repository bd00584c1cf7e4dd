# app/crud/crud_waitlist_entry.py
import logging
from datetime import date, datetime
from typing import Optional, List, Sequence, Any

from sqlalchemy import update, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.types import utcnow
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.waitlist import WaitlistEntryCreate, WaitlistStatus, ACTIVE_STATUSES

logger = logging.getLogger(__name__)

# Columns reset whenever an entry leaves 'notified'
OFFER_CLEARED = {
    "offer_token_hash": None,
    "reminder_token_hash": None,
    "offer_slot_start": None,
    "offer_slot_end": None,
    "offer_employee_id": None,
    "offer_slot_key": None,
    "offer_trigger": None,
    "offer_from_status": None,
    "notified_at": None,
    "expires_at": None,
    "claim_started_at": None,
    "reminder_sent_at": None,
}


def _matches_token(token_hash: str):
    return or_(
        WaitlistEntry.offer_token_hash == token_hash,
        WaitlistEntry.reminder_token_hash == token_hash,
    )


class WaitlistStore:
    """
    Durable store for waitlist entries.

    Every state transition is a conditional UPDATE keyed on the entry's
    current status (and offer token where relevant). A transition that
    affects zero rows lost a race and is reported as False.
    """

    def __init__(self, db: Session):
        self.db = db

    # ==================== Reads ====================

    def get(self, *, salon_id: str, entry_id: str) -> Optional[WaitlistEntry]:
        """Get an entry scoped to its salon."""
        return (
            self.db.query(WaitlistEntry)
            .filter(WaitlistEntry.id == entry_id, WaitlistEntry.salon_id == salon_id)
            .first()
        )

    def get_by_token_hash(self, *, token_hash: str) -> Optional[WaitlistEntry]:
        """Get the entry holding an active offer with this token (issued or reminder)."""
        return (
            self.db.query(WaitlistEntry)
            .filter(
                _matches_token(token_hash),
                WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
            )
            .first()
        )

    def list_entries(
        self,
        *,
        salon_id: str,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[WaitlistEntry]:
        query = self.db.query(WaitlistEntry).filter(WaitlistEntry.salon_id == salon_id)
        if status:
            query = query.filter(WaitlistEntry.status == status)
        return query.order_by(WaitlistEntry.created_at.asc()).limit(limit).all()

    def find_active_duplicate(
        self, *, salon_id: str, obj_in: WaitlistEntryCreate
    ) -> Optional[WaitlistEntry]:
        """Same customer already waiting for the same service on the same date."""
        contact_filters = []
        if obj_in.customer_email:
            contact_filters.append(WaitlistEntry.customer_email == obj_in.customer_email)
        if obj_in.customer_phone:
            contact_filters.append(WaitlistEntry.customer_phone == obj_in.customer_phone)

        return (
            self.db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.salon_id == salon_id,
                WaitlistEntry.service_id == obj_in.service_id,
                WaitlistEntry.preferred_date == obj_in.preferred_date,
                WaitlistEntry.customer_name == obj_in.customer_name,
                WaitlistEntry.status.in_(ACTIVE_STATUSES),
                or_(*contact_filters),
            )
            .first()
        )

    def get_waiting_candidates(
        self,
        *,
        salon_id: str,
        service_id: str,
        preferred_date: date,
        employee_id: Optional[str],
        now: datetime,
    ) -> List[WaitlistEntry]:
        """
        Eligible 'waiting' entries for a freed slot, oldest first.

        Entries still inside a cooldown window are left out. When the slot
        belongs to a specific employee, entries asking for someone else are
        left out too.
        """
        query = self.db.query(WaitlistEntry).filter(
            WaitlistEntry.salon_id == salon_id,
            WaitlistEntry.service_id == service_id,
            WaitlistEntry.preferred_date == preferred_date,
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
            or_(WaitlistEntry.cooldown_until.is_(None), WaitlistEntry.cooldown_until <= now),
        )
        if employee_id:
            query = query.filter(
                or_(WaitlistEntry.employee_id.is_(None), WaitlistEntry.employee_id == employee_id)
            )
        return query.order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc()).all()

    def has_pending_offer_for_slot(self, *, slot_key: str) -> bool:
        return (
            self.db.query(WaitlistEntry.id)
            .filter(
                WaitlistEntry.offer_slot_key == slot_key,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
            )
            .first()
            is not None
        )

    def get_expired_offers(
        self, *, now: datetime, claim_lock_cutoff: datetime, limit: int
    ) -> List[WaitlistEntry]:
        """Offers past their deadline that no live claim is working on."""
        return (
            self.db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
                WaitlistEntry.expires_at <= now,
                or_(
                    WaitlistEntry.claim_started_at.is_(None),
                    WaitlistEntry.claim_started_at < claim_lock_cutoff,
                ),
            )
            .order_by(WaitlistEntry.expires_at.asc())
            .limit(limit)
            .all()
        )

    def get_due_cooldowns(self, *, now: datetime, limit: int) -> List[WaitlistEntry]:
        return (
            self.db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.status == WaitlistStatus.WAITING.value,
                WaitlistEntry.cooldown_until.is_not(None),
                WaitlistEntry.cooldown_until <= now,
            )
            .order_by(WaitlistEntry.cooldown_until.asc())
            .limit(limit)
            .all()
        )

    def get_stale_waiting(self, *, today: date, limit: int) -> List[WaitlistEntry]:
        return (
            self.db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.status == WaitlistStatus.WAITING.value,
                WaitlistEntry.preferred_date < today,
            )
            .order_by(WaitlistEntry.preferred_date.asc())
            .limit(limit)
            .all()
        )

    def get_due_reminders(
        self, *, now: datetime, window_end: datetime, limit: int
    ) -> List[WaitlistEntry]:
        """Pending offers expiring soon that have not been reminded yet."""
        return (
            self.db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
                WaitlistEntry.reminder_sent_at.is_(None),
                WaitlistEntry.claim_started_at.is_(None),
                WaitlistEntry.expires_at > now,
                WaitlistEntry.expires_at <= window_end,
            )
            .order_by(WaitlistEntry.expires_at.asc())
            .limit(limit)
            .all()
        )

    # ==================== Writes ====================

    def create(self, *, salon_id: str, obj_in: WaitlistEntryCreate) -> WaitlistEntry:
        entry = WaitlistEntry(
            salon_id=salon_id,
            status=WaitlistStatus.WAITING.value,
            **obj_in.model_dump(),
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"Created waitlist entry {entry.id} for salon {salon_id}")
        return entry

    def compare_and_set(
        self,
        entry_id: str,
        *,
        expected_status: str,
        values: dict[str, Any],
        salon_id: Optional[str] = None,
        token_hash: Optional[str] = None,
        conditions: Sequence[Any] = (),
    ) -> bool:
        """
        Atomically move an entry out of `expected_status`.

        Returns True when exactly one row was updated. A unique-constraint
        violation (e.g. another active offer on the same slot) counts as a
        lost race.
        """
        clauses = [WaitlistEntry.id == entry_id, WaitlistEntry.status == expected_status]
        if salon_id is not None:
            clauses.append(WaitlistEntry.salon_id == salon_id)
        if token_hash is not None:
            clauses.append(_matches_token(token_hash))
        clauses.extend(conditions)

        stmt = (
            update(WaitlistEntry)
            .where(and_(*clauses))
            .values(**{"updated_at": utcnow(), **values})
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Transition of waitlist entry {entry_id} rejected by constraint: {e.orig}")
            return False

        # Drop cached state so the next read sees the committed row.
        self.db.expire_all()
        return result.rowcount == 1

    def mark_notified(self, entry_id: str, *, salon_id: str, offer: dict[str, Any]) -> bool:
        """waiting -> notified, only when no other offer holds the entry."""
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.WAITING.value,
            salon_id=salon_id,
            values={"status": WaitlistStatus.NOTIFIED.value, **offer},
            conditions=[WaitlistEntry.offer_token_hash.is_(None)],
        )

    def begin_claim(self, entry_id: str, *, token_hash: str, now: datetime) -> bool:
        """Take the claim lock on an unexpired offer."""
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.NOTIFIED.value,
            token_hash=token_hash,
            values={"claim_started_at": now},
            conditions=[WaitlistEntry.claim_started_at.is_(None), WaitlistEntry.expires_at > now],
        )

    def abort_claim(self, entry_id: str, *, token_hash: str, started_at: datetime) -> bool:
        """Release the claim lock without changing status."""
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.NOTIFIED.value,
            token_hash=token_hash,
            values={"claim_started_at": None},
            conditions=[WaitlistEntry.claim_started_at == started_at],
        )

    def mark_booked(
        self,
        entry_id: str,
        *,
        token_hash: str,
        booking_id: str,
        channel: str,
        now: datetime,
    ) -> bool:
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.NOTIFIED.value,
            token_hash=token_hash,
            values={
                **OFFER_CLEARED,
                "status": WaitlistStatus.BOOKED.value,
                "booking_id": booking_id,
                "responded_at": now,
                "response_channel": channel,
                "cooldown_until": None,
                "cooldown_reason": None,
            },
        )

    def release_offer(
        self,
        entry_id: str,
        *,
        token_hash: str,
        to_status: str,
        channel: str,
        now: datetime,
        cooldown_until: Optional[datetime] = None,
        cooldown_reason: Optional[str] = None,
        decline_count: Optional[int] = None,
        conditions: Sequence[Any] = (),
    ) -> bool:
        """notified -> waiting/expired, clearing the offer entirely."""
        values = {
            **OFFER_CLEARED,
            "status": to_status,
            "responded_at": now,
            "response_channel": channel,
            "cooldown_until": cooldown_until,
            "cooldown_reason": cooldown_reason,
        }
        if decline_count is not None:
            values["decline_count"] = decline_count
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.NOTIFIED.value,
            token_hash=token_hash,
            values=values,
            conditions=conditions,
        )

    def mark_cancelled(
        self,
        entry_id: str,
        *,
        salon_id: str,
        expected_status: str,
        reason: Optional[str],
        now: datetime,
    ) -> bool:
        """Withdraw an entry. An offer that is mid-claim cannot be withdrawn."""
        return self.compare_and_set(
            entry_id,
            expected_status=expected_status,
            salon_id=salon_id,
            conditions=[WaitlistEntry.claim_started_at.is_(None)],
            values={
                **OFFER_CLEARED,
                "status": WaitlistStatus.CANCELLED.value,
                "cancellation_reason": reason,
                "responded_at": now,
                "response_channel": "operator",
            },
        )

    def clear_cooldown(self, entry_id: str, *, cooldown_until: datetime) -> bool:
        """Metadata-only reactivation of a cooled-down entry."""
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.WAITING.value,
            values={"cooldown_until": None, "cooldown_reason": None},
            conditions=[WaitlistEntry.cooldown_until == cooldown_until],
        )

    def mark_expired(self, entry_id: str) -> bool:
        """waiting -> expired for entries whose preferred date has passed."""
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.WAITING.value,
            values={"status": WaitlistStatus.EXPIRED.value, "cooldown_until": None},
        )

    def record_reminder(
        self,
        entry_id: str,
        *,
        token_hash: str,
        reminder_token_hash: Optional[str],
        now: datetime,
    ) -> bool:
        """
        Mark an offer as reminded (once per offer).

        The reminder token is added next to the issued one; both stay valid
        until the offer is resolved.
        """
        return self.compare_and_set(
            entry_id,
            expected_status=WaitlistStatus.NOTIFIED.value,
            token_hash=token_hash,
            values={"reminder_token_hash": reminder_token_hash, "reminder_sent_at": now},
            conditions=[
                WaitlistEntry.reminder_sent_at.is_(None),
                WaitlistEntry.claim_started_at.is_(None),
            ],
        )
