# app/schemas/waitlist.py
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, date, time
from enum import Enum

from app.db.types import as_utc


# --- Enums ---

class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    BOOKED = "booked"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


ACTIVE_STATUSES = {WaitlistStatus.WAITING.value, WaitlistStatus.NOTIFIED.value}


class OfferTrigger(str, Enum):
    CANCELLATION = "cancellation"
    MANUAL_NOTIFY = "manual_notify"
    LIFECYCLE_CHAIN = "lifecycle_chain"


class ClaimAction(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


class ClaimChannel(str, Enum):
    LINK = "link"
    OPERATOR = "operator"
    API = "api"


class ClaimStatus(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    INVALID = "invalid"


class IssueOutcome(str, Enum):
    ISSUED = "issued"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SLOT_UNAVAILABLE = "slot_unavailable"
    INVALID_SLOT = "invalid_slot"


# --- Request Schemas ---

class WaitlistEntryCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(None, max_length=32)
    customer_id: Optional[str] = None
    service_id: str = Field(..., min_length=1)
    employee_id: Optional[str] = None
    preferred_date: date
    preferred_time_start: Optional[time] = None
    preferred_time_end: Optional[time] = None

    @field_validator("customer_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("customer_name is required")
        return v

    @field_validator("customer_email", mode="before")
    @classmethod
    def normalise_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator("customer_phone", "employee_id", "customer_id")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def check_contact_and_window(self):
        if not self.customer_email and not self.customer_phone:
            raise ValueError(
                "Provide at least one contact method: customer_email or customer_phone"
            )
        if (self.preferred_time_start is None) != (self.preferred_time_end is None):
            raise ValueError(
                "preferred_time_start and preferred_time_end must be given together"
            )
        if self.preferred_time_start and self.preferred_time_end <= self.preferred_time_start:
            raise ValueError("preferred_time_end must be after preferred_time_start")
        return self


class WaitlistCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class NotifyRequest(BaseModel):
    slot_start: datetime
    slot_end: datetime
    trigger: OfferTrigger = OfferTrigger.MANUAL_NOTIFY
    employee_id: Optional[str] = None

    @field_validator("slot_start", "slot_end")
    @classmethod
    def slots_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class ClaimRequest(BaseModel):
    offer_token: str = Field(..., min_length=16, max_length=256)
    action: ClaimAction
    channel: ClaimChannel = ClaimChannel.LINK


class BookingCancelledNotification(BaseModel):
    salon_id: str
    service_id: str
    date: date
    employee_id: Optional[str] = None
    slot_start: Optional[datetime] = None
    slot_end: Optional[datetime] = None

    @field_validator("slot_start", "slot_end")
    @classmethod
    def slots_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @model_validator(mode="after")
    def check_slot_pair(self):
        if (self.slot_start is None) != (self.slot_end is None):
            raise ValueError("slot_start and slot_end must be given together")
        return self


# --- Response Schemas ---

class WaitlistEntryResponse(BaseModel):
    id: str
    salon_id: str
    customer_id: Optional[str] = None
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    service_id: str
    employee_id: Optional[str] = None
    preferred_date: date
    preferred_time_start: Optional[time] = None
    preferred_time_end: Optional[time] = None

    status: WaitlistStatus
    offer_slot_start: Optional[datetime] = None
    offer_slot_end: Optional[datetime] = None
    offer_trigger: Optional[str] = None
    notified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    decline_count: int = 0
    booking_id: Optional[str] = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WaitlistJoinResponse(BaseModel):
    entry: WaitlistEntryResponse
    already_joined: bool = False


class WaitlistEntryListResponse(BaseModel):
    waitlist_entries: List[WaitlistEntryResponse]
    total: int


class NotifyResponse(BaseModel):
    entry_id: str
    notified: bool
    offer_token: str
    expires_at: datetime


class ClaimResponse(BaseModel):
    status: ClaimStatus
    booking_id: Optional[str] = None
    message: str


class CancellationHookResponse(BaseModel):
    offers_issued: int = Field(..., alias="offersIssued")
    candidates_considered: int = Field(..., alias="candidatesConsidered")
    errors: int = 0

    model_config = {"populate_by_name": True}


class LifecycleSweepResponse(BaseModel):
    expired_offers: int = Field(..., alias="expiredOffers")
    cooldown_reactivations: int = Field(..., alias="cooldownReactivations")
    stale_entries_expired: int = Field(0, alias="staleEntriesExpired")
    reminders_sent: int = Field(0, alias="remindersSent")
    errors: int = 0

    model_config = {"populate_by_name": True}
