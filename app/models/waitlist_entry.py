# app/models/waitlist_entry.py
import uuid
from sqlalchemy import (
    Column, String, Integer, Date, Time, Index, CheckConstraint, text
)
from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class WaitlistEntry(Base):
    """
    A customer's standing request for a slot that could not be booked.

    Status lifecycle:
    - waiting: eligible for offers (unless cooldown_until is in the future)
    - notified: holds exactly one active offer (offer_* columns populated)
    - booked / cancelled / expired: terminal

    Offer columns are only populated while status = 'notified'. The plaintext
    offer token is never stored, only its SHA-256 digest.
    """
    __tablename__ = "waitlist_entries"

    id = Column(String, primary_key=True, default=lambda: f"wtl_{uuid.uuid4().hex[:12]}")
    salon_id = Column(String, nullable=False, index=True)

    # Customer identity (reference and/or freeform contact)
    customer_id = Column(String, nullable=True)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(320), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    # What the customer wants
    service_id = Column(String, nullable=False)
    employee_id = Column(String, nullable=True)  # NULL = any qualified employee
    preferred_date = Column(Date, nullable=False)
    preferred_time_start = Column(Time, nullable=True)
    preferred_time_end = Column(Time, nullable=True)

    status = Column(String(20), nullable=False, default="waiting", server_default=text("'waiting'"))

    # Active offer
    offer_token_hash = Column(String(64), nullable=True, unique=True)
    reminder_token_hash = Column(String(64), nullable=True, unique=True)  # second link sent with the reminder
    offer_slot_start = Column(UTCDateTime, nullable=True)
    offer_slot_end = Column(UTCDateTime, nullable=True)
    offer_employee_id = Column(String, nullable=True)
    offer_slot_key = Column(String, nullable=True, unique=True)  # one active offer per calendar slot
    offer_trigger = Column(String(32), nullable=True)  # cancellation, manual_notify, lifecycle_chain
    offer_from_status = Column(String(20), nullable=True)
    offer_attempt = Column(Integer, nullable=False, default=0, server_default=text("0"))
    notified_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    claim_started_at = Column(UTCDateTime, nullable=True)
    reminder_sent_at = Column(UTCDateTime, nullable=True)

    # Cooldown after a decline or a lapsed offer
    cooldown_until = Column(UTCDateTime, nullable=True)
    cooldown_reason = Column(String(20), nullable=True)  # declined, timeout
    decline_count = Column(Integer, nullable=False, default=0, server_default=text("0"))

    # Resolution
    booking_id = Column(String, nullable=True)
    responded_at = Column(UTCDateTime, nullable=True)
    response_channel = Column(String(20), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'notified', 'booked', 'cancelled', 'expired')",
            name="check_waitlist_entry_status",
        ),
        # Candidate lookup for a freed slot (FIFO within salon/service/date)
        Index("ix_wtl_candidates", "salon_id", "service_id", "preferred_date", "status", "created_at"),
        # Expiry sweep
        Index("ix_wtl_status_expires", "status", "expires_at"),
        # Cooldown reactivation sweep
        Index("ix_wtl_status_cooldown", "status", "cooldown_until"),
    )

    @property
    def has_contact(self) -> bool:
        return bool(self.customer_email or self.customer_phone)
