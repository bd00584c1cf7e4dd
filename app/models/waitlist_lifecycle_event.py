# app/models/waitlist_lifecycle_event.py
import uuid
from sqlalchemy import Column, String, JSON, Index
from sqlalchemy.dialects.postgresql import JSONB
from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class WaitlistLifecycleEvent(Base):
    """
    Append-only audit trail for waitlist entries.

    Reasons:
    - entry_created, entry_cancelled, entry_expired
    - offer_created, offer_reminder_sent
    - offer_accepted, offer_declined, offer_expired, offer_slot_lost
    - cooldown_reactivated
    """
    __tablename__ = "waitlist_lifecycle_events"

    id = Column(String, primary_key=True, default=lambda: f"wle_{uuid.uuid4().hex[:12]}")
    salon_id = Column(String, nullable=False)
    waitlist_entry_id = Column(String, nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    reason = Column(String(50), nullable=False)
    channel = Column(String(20), nullable=False, default="system")  # link, operator, system, api
    event_data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_wle_salon_created", "salon_id", "created_at"),
    )
