# app/services/lifecycle_reconciler.py
"""
Periodic reconciliation of waitlist state.

Every sweep is idempotent and safe to overlap with live traffic and with
another sweep: each row is moved by a conditional update, and a row that
somebody else already moved is skipped. Per-entry database errors are
rolled back, counted and do not stop the sweep.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.crud.crud_waitlist_entry import WaitlistStore
from app.crud.crud_waitlist_event import WaitlistAuditLog
from app.db.types import utcnow
from app.schemas.waitlist import WaitlistStatus
from app.services.cancellation_coordinator import CancellationCoordinator
from app.services.notifier import Notifier, Contact, REMINDER_TEMPLATE
from app.services.offer_issuer import format_slot_label
from app.services.offer_release import OfferSnapshot, lapse_offer, claim_lock_cutoff
from app.utils.waitlist import generate_offer_token, build_claim_links

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    expired_offers: int = 0
    cooldown_reactivations: int = 0
    stale_entries_expired: int = 0
    reminders_sent: int = 0
    errors: int = 0


class LifecycleReconciler:
    def __init__(
        self,
        store: WaitlistStore,
        audit: WaitlistAuditLog,
        notifier: Notifier,
        coordinator: Optional[CancellationCoordinator] = None,
    ):
        self.store = store
        self.audit = audit
        self.notifier = notifier
        self.coordinator = coordinator

    def _failed(self, what: str, entry_id: str, e: Exception) -> None:
        self.store.db.rollback()
        logger.error(f"Waitlist sweep failed to {what} entry {entry_id}: {e}")

    def expire_offers(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """
        Return lapsed offers to their previous status.

        Offers with a live claim lock are left for the claimer. With
        chaining on, the lapsed slot goes to the next candidate.

        Returns:
            Tuple of (expired_count, error_count)
        """
        now = now or utcnow()
        expired, errors = 0, 0

        entries = self.store.get_expired_offers(
            now=now,
            claim_lock_cutoff=claim_lock_cutoff(now),
            limit=settings.WAITLIST_SWEEP_BATCH_SIZE,
        )
        offers = [OfferSnapshot.from_entry(entry) for entry in entries]

        for offer in offers:
            try:
                if not lapse_offer(self.store, self.audit, offer, now=now):
                    continue
                expired += 1
                if settings.WAITLIST_CHAIN_ON_EXPIRY and self.coordinator:
                    chained = self.coordinator.reoffer_released_slot(offer.released_slot())
                    errors += chained.errors
            except SQLAlchemyError as e:
                errors += 1
                self._failed("expire offer on", offer.entry_id, e)

        if expired:
            logger.info(f"Expired {expired} waitlist offers")
        return expired, errors

    def reactivate_cooldown_entries(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """Clear elapsed cooldowns. Status stays 'waiting'; offers are not touched."""
        now = now or utcnow()
        reactivated, errors = 0, 0

        entries = self.store.get_due_cooldowns(now=now, limit=settings.WAITLIST_SWEEP_BATCH_SIZE)
        due = [(e.id, e.salon_id, e.cooldown_until, e.cooldown_reason) for e in entries]

        for entry_id, salon_id, cooldown_until, cooldown_reason in due:
            try:
                if not self.store.clear_cooldown(entry_id, cooldown_until=cooldown_until):
                    continue
                reactivated += 1
                self.audit.log_event(
                    salon_id=salon_id,
                    waitlist_entry_id=entry_id,
                    reason="cooldown_reactivated",
                    from_status=WaitlistStatus.WAITING.value,
                    to_status=WaitlistStatus.WAITING.value,
                    metadata={
                        "cooldown_until": cooldown_until.isoformat(),
                        "cooldown_reason": cooldown_reason,
                    },
                )
            except SQLAlchemyError as e:
                errors += 1
                self._failed("reactivate", entry_id, e)

        if reactivated:
            logger.info(f"Reactivated {reactivated} waitlist entries after cooldown")
        return reactivated, errors

    def expire_stale_entries(self, today: Optional[date] = None) -> tuple[int, int]:
        """Waiting entries whose preferred date is in the past become 'expired'."""
        today = today or utcnow().date()
        expired, errors = 0, 0

        entries = self.store.get_stale_waiting(today=today, limit=settings.WAITLIST_SWEEP_BATCH_SIZE)
        stale = [(e.id, e.salon_id, e.preferred_date) for e in entries]

        for entry_id, salon_id, preferred_date in stale:
            try:
                if not self.store.mark_expired(entry_id):
                    continue
                expired += 1
                self.audit.log_event(
                    salon_id=salon_id,
                    waitlist_entry_id=entry_id,
                    reason="entry_expired",
                    from_status=WaitlistStatus.WAITING.value,
                    to_status=WaitlistStatus.EXPIRED.value,
                    metadata={"preferred_date": preferred_date.isoformat()},
                )
            except SQLAlchemyError as e:
                errors += 1
                self._failed("expire", entry_id, e)

        if expired:
            logger.info(f"Expired {expired} stale waitlist entries")
        return expired, errors

    def send_offer_reminders(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """
        Remind customers once before their offer lapses.

        The reminder carries its own token. The issued token keeps working,
        so a link handed out another way is not lost. Recording the reminder
        is a conditional update, so overlapping sweeps send at most one
        reminder per offer.
        """
        now = now or utcnow()
        sent, errors = 0, 0
        window_end = now + timedelta(minutes=settings.WAITLIST_REMINDER_LEAD_MINUTES)

        entries = self.store.get_due_reminders(
            now=now, window_end=window_end, limit=settings.WAITLIST_SWEEP_BATCH_SIZE
        )
        offers = [(OfferSnapshot.from_entry(entry), entry.has_contact) for entry in entries]

        for offer, has_contact in offers:
            try:
                if not has_contact:
                    # Nothing to send; mark it so the offer is not picked up again.
                    self.store.record_reminder(
                        offer.entry_id,
                        token_hash=offer.token_hash,
                        reminder_token_hash=None,
                        now=now,
                    )
                    continue

                token, token_hash = generate_offer_token()
                if not self.store.record_reminder(
                    offer.entry_id, token_hash=offer.token_hash, reminder_token_hash=token_hash, now=now
                ):
                    continue

                contact = Contact(
                    name=offer.customer_name,
                    email=offer.customer_email,
                    phone=offer.customer_phone,
                )
                delivered = self._deliver_reminder(contact, token, offer, now)
                if delivered:
                    sent += 1
                self.audit.log_event(
                    salon_id=offer.salon_id,
                    waitlist_entry_id=offer.entry_id,
                    reason="offer_reminder_sent",
                    from_status=WaitlistStatus.NOTIFIED.value,
                    to_status=WaitlistStatus.NOTIFIED.value,
                    metadata={"expires_at": offer.expires_at.isoformat(), "delivered": delivered},
                )
            except SQLAlchemyError as e:
                errors += 1
                self._failed("remind", offer.entry_id, e)

        if sent:
            logger.info(f"Sent {sent} waitlist offer reminders")
        return sent, errors

    def _deliver_reminder(self, contact: Contact, token: str, offer: OfferSnapshot, now: datetime) -> bool:
        minutes_left = max(int((offer.expires_at - now).total_seconds() // 60), 1)
        context = {
            **build_claim_links(token),
            "slot_label": format_slot_label(offer.slot_start),
            "slot_start": offer.slot_start.isoformat(),
            "expires_in_minutes": minutes_left,
        }
        try:
            return bool(self.notifier.send(contact, REMINDER_TEMPLATE, context))
        except Exception as e:
            logger.error(f"Reminder delivery failed for waitlist entry {offer.entry_id}: {e}", exc_info=True)
            return False

    def run_sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """Run every reconciliation step once."""
        now = now or utcnow()
        summary = SweepSummary()

        summary.expired_offers, errors = self.expire_offers(now)
        summary.errors += errors
        summary.cooldown_reactivations, errors = self.reactivate_cooldown_entries(now)
        summary.errors += errors
        summary.stale_entries_expired, errors = self.expire_stale_entries(now.date())
        summary.errors += errors
        summary.reminders_sent, errors = self.send_offer_reminders(now)
        summary.errors += errors

        logger.info(
            f"Waitlist sweep: expired_offers={summary.expired_offers} "
            f"cooldown_reactivations={summary.cooldown_reactivations} "
            f"stale_entries_expired={summary.stale_entries_expired} "
            f"reminders_sent={summary.reminders_sent} errors={summary.errors}"
        )
        return summary
