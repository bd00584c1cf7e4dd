from datetime import date, datetime, time, timedelta, timezone
from types import SimpleNamespace

from app.core.config import settings
from app.utils.waitlist import (
    generate_offer_token,
    hash_offer_token,
    build_claim_links,
    build_slot_key,
    employee_matches,
    slot_fits_window,
    compute_cooldown,
)

SLOT_START = datetime(2030, 5, 1, 10, 0, tzinfo=timezone.utc)
SLOT_END = datetime(2030, 5, 1, 10, 30, tzinfo=timezone.utc)


def test_offer_tokens_are_unique_and_only_hash_is_derived():
    token_a, hash_a = generate_offer_token()
    token_b, _ = generate_offer_token()

    assert token_a != token_b
    assert len(token_a) >= 32
    assert hash_a == hash_offer_token(token_a)
    assert token_a not in hash_a
    assert len(hash_a) == 64


def test_claim_links(monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_APP_URL", "https://book.example.com/")
    monkeypatch.setattr(settings, "PUBLIC_API_URL", "https://api.example.com/api/v1")

    links = build_claim_links("tok123")

    assert links["claim_link"] == "https://book.example.com/waitlist/claim?token=tok123"
    assert links["decline_link"] == "https://api.example.com/api/v1/waitlist/claim?token=tok123&action=decline"


def test_slot_key_is_normalised_to_utc():
    plus_two = timezone(timedelta(hours=2))
    local = datetime(2030, 5, 1, 12, 0, tzinfo=plus_two)

    assert build_slot_key("s1", None, local) == "s1:*:2030-05-01T10:00:00"
    assert build_slot_key("s1", "emp_1", SLOT_START) == "s1:emp_1:2030-05-01T10:00:00"


def test_employee_matching():
    assert employee_matches(None, "emp_1")
    assert employee_matches("emp_1", None)
    assert employee_matches("emp_1", "emp_1")
    assert not employee_matches("emp_1", "emp_2")


def test_slot_fits_window():
    any_time = SimpleNamespace(preferred_date=date(2030, 5, 1), preferred_time_start=None, preferred_time_end=None)
    morning = SimpleNamespace(
        preferred_date=date(2030, 5, 1), preferred_time_start=time(9, 0), preferred_time_end=time(10, 30)
    )
    too_early = SimpleNamespace(
        preferred_date=date(2030, 5, 1), preferred_time_start=time(8, 0), preferred_time_end=time(10, 15)
    )
    other_day = SimpleNamespace(preferred_date=date(2030, 5, 2), preferred_time_start=None, preferred_time_end=None)

    assert slot_fits_window(any_time, SLOT_START, SLOT_END)
    assert slot_fits_window(morning, SLOT_START, SLOT_END)
    assert not slot_fits_window(too_early, SLOT_START, SLOT_END)
    assert not slot_fits_window(other_day, SLOT_START, SLOT_END)


def test_cooldown_policy():
    now = datetime(2030, 5, 1, 9, 0, tzinfo=timezone.utc)

    until, passive = compute_cooldown(1, now)
    assert until == now + timedelta(minutes=settings.WAITLIST_COOLDOWN_MINUTES)
    assert passive is False

    until, passive = compute_cooldown(settings.WAITLIST_PASSIVE_DECLINE_THRESHOLD, now)
    assert until == now + timedelta(minutes=settings.WAITLIST_PASSIVE_COOLDOWN_MINUTES)
    assert passive is True
