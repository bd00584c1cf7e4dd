# app/services/waitlist_services.py
"""
Wires the waitlist components around one database session.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.crud.crud_waitlist_entry import WaitlistStore
from app.crud.crud_waitlist_event import WaitlistAuditLog
from app.services.calendar_client import Calendar, HttpCalendarClient
from app.services.cancellation_coordinator import CancellationCoordinator
from app.services.claim_processor import ClaimProcessor
from app.services.lifecycle_reconciler import LifecycleReconciler
from app.services.notifier import Notifier, WaitlistNotifier
from app.services.offer_issuer import OfferIssuer
from app.services.waitlist_entries import WaitlistEntryService


@dataclass
class WaitlistServices:
    store: WaitlistStore
    audit: WaitlistAuditLog
    entries: WaitlistEntryService
    issuer: OfferIssuer
    claims: ClaimProcessor
    coordinator: CancellationCoordinator
    reconciler: LifecycleReconciler


def build_waitlist_services(
    db: Session,
    calendar: Optional[Calendar] = None,
    notifier: Optional[Notifier] = None,
) -> WaitlistServices:
    calendar = calendar or HttpCalendarClient()
    notifier = notifier or WaitlistNotifier()

    store = WaitlistStore(db)
    audit = WaitlistAuditLog(db)
    issuer = OfferIssuer(store, calendar, notifier, audit)
    coordinator = CancellationCoordinator(issuer, calendar)
    return WaitlistServices(
        store=store,
        audit=audit,
        entries=WaitlistEntryService(store, audit),
        issuer=issuer,
        claims=ClaimProcessor(store, calendar, audit),
        coordinator=coordinator,
        reconciler=LifecycleReconciler(store, audit, notifier, coordinator),
    )
