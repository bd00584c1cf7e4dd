# app/utils/waitlist.py
"""
Waitlist helpers: offer tokens, claim links, slot keys, matching and cooldown policy.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from app.core.config import settings

OFFER_TOKEN_BYTES = 24


def generate_offer_token() -> tuple[str, str]:
    """
    Generate an unguessable single-use offer token.

    Returns:
        Tuple of (token, token_hash). Only the hash is persisted; the token
        goes out in the claim link.
    """
    token = secrets.token_urlsafe(OFFER_TOKEN_BYTES)
    return token, hash_offer_token(token)


def hash_offer_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def build_claim_links(token: str) -> dict[str, str]:
    """
    Accept goes through the public booking site (which POSTs the claim);
    decline is a one-click GET against the API.
    """
    accept_url = f"{settings.PUBLIC_APP_URL.rstrip('/')}/waitlist/claim?" + urlencode(
        {"token": token}
    )
    decline_url = f"{settings.PUBLIC_API_URL.rstrip('/')}/waitlist/claim?" + urlencode(
        {"token": token, "action": "decline"}
    )
    return {"claim_link": accept_url, "decline_link": decline_url}


def build_slot_key(salon_id: str, employee_id: Optional[str], slot_start: datetime) -> str:
    """Key identifying a calendar slot; at most one active offer may carry it."""
    start_utc = slot_start.astimezone(timezone.utc) if slot_start.tzinfo else slot_start
    return f"{salon_id}:{employee_id or '*'}:{start_utc.strftime('%Y-%m-%dT%H:%M:%S')}"


def employee_matches(entry_employee_id: Optional[str], slot_employee_id: Optional[str]) -> bool:
    """An entry without an employee preference accepts any employee."""
    if entry_employee_id is None or slot_employee_id is None:
        return True
    return entry_employee_id == slot_employee_id


def slot_fits_window(entry, slot_start: datetime, slot_end: datetime) -> bool:
    """
    Check the slot's wall-clock times against the entry's preferred window.

    Entries without a window accept any time on their preferred date.
    """
    if slot_start.date() != entry.preferred_date:
        return False
    if entry.preferred_time_start is None or entry.preferred_time_end is None:
        return True
    return (
        slot_start.time() >= entry.preferred_time_start
        and slot_end.time() <= entry.preferred_time_end
        and slot_end.date() == slot_start.date()
    )


def compute_cooldown(decline_count: int, now: datetime) -> tuple[datetime, bool]:
    """
    Cooldown window after a decline or a lapsed offer.

    Customers who keep letting offers go (decline_count at or above the
    passive threshold) get the long passive cooldown.

    Returns:
        Tuple of (cooldown_until, passive_applied)
    """
    passive = decline_count >= settings.WAITLIST_PASSIVE_DECLINE_THRESHOLD
    minutes = (
        settings.WAITLIST_PASSIVE_COOLDOWN_MINUTES
        if passive
        else settings.WAITLIST_COOLDOWN_MINUTES
    )
    return now + timedelta(minutes=minutes), passive


def offer_expiry(now: datetime) -> datetime:
    return now + timedelta(minutes=settings.WAITLIST_OFFER_WINDOW_MINUTES)
