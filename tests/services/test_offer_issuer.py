from datetime import timedelta, time

import pytest

from app.core.exceptions import UpstreamFailure
from app.db.types import utcnow
from app.schemas.waitlist import IssueOutcome, OfferTrigger
from app.utils.waitlist import hash_offer_token
from tests.utils.waitlist import SALON_ID, SERVICE_ID, create_entry, reload, slot_on


def _issue(services, entry_id, slot=None, **kwargs):
    start, end = slot or slot_on()
    return services.issuer.issue_offer(
        salon_id=kwargs.pop("salon_id", SALON_ID),
        entry_id=entry_id,
        slot_start=start,
        slot_end=end,
        trigger=kwargs.pop("trigger", OfferTrigger.MANUAL_NOTIFY),
        **kwargs,
    )


def test_issue_offer_moves_entry_to_notified(services, db_session, notifier):
    entry = create_entry(db_session)

    before = utcnow()
    result = _issue(services, entry.id)

    assert result.outcome == IssueOutcome.ISSUED
    assert result.notified is True
    assert len(result.offer_token) >= 32
    assert before + timedelta(minutes=119) < result.expires_at <= utcnow() + timedelta(minutes=120)

    fresh = reload(db_session, entry.id)
    assert fresh.status == "notified"
    assert fresh.offer_token_hash == hash_offer_token(result.offer_token)
    assert fresh.offer_token_hash != result.offer_token
    assert fresh.offer_trigger == "manual_notify"
    assert fresh.offer_from_status == "waiting"
    assert fresh.offer_attempt == 1

    contact, template, context = notifier.sent[0]
    assert template == "waitlist_offer"
    assert contact.email == "ada@example.com"
    assert result.offer_token in context["claim_link"]
    assert "action=decline" in context["decline_link"]


def test_second_offer_on_same_entry_is_conflict(services, db_session):
    entry = create_entry(db_session)
    assert _issue(services, entry.id).issued

    result = _issue(services, entry.id, slot=slot_on(hour=14))

    assert result.outcome == IssueOutcome.CONFLICT
    assert result.message == "A pending offer already exists"


def test_slot_with_pending_offer_is_conflict(services, db_session):
    a = create_entry(db_session, customer_name="A")
    b = create_entry(db_session, customer_name="B")
    assert _issue(services, a.id).issued

    result = _issue(services, b.id)

    assert result.outcome == IssueOutcome.CONFLICT
    assert reload(db_session, b.id).status == "waiting"


def test_invalid_slot(services, db_session):
    entry = create_entry(db_session)
    start, _ = slot_on()

    result = _issue(services, entry.id, slot=(start, start))

    assert result.outcome == IssueOutcome.INVALID_SLOT
    assert reload(db_session, entry.id).status == "waiting"


def test_unknown_or_foreign_entry_is_not_found(services, db_session):
    entry = create_entry(db_session)

    assert _issue(services, "wtl_missing").outcome == IssueOutcome.NOT_FOUND
    assert _issue(services, entry.id, salon_id="other_salon").outcome == IssueOutcome.NOT_FOUND


def test_terminal_entry_is_conflict(services, db_session):
    entry = create_entry(db_session, status="cancelled")

    assert _issue(services, entry.id).outcome == IssueOutcome.CONFLICT


def test_slot_taken_in_calendar_is_unavailable(services, db_session, calendar):
    entry = create_entry(db_session)
    start, end = slot_on()
    calendar.take(start, end)

    result = _issue(services, entry.id, slot=(start, end))

    assert result.outcome == IssueOutcome.SLOT_UNAVAILABLE
    assert reload(db_session, entry.id).status == "waiting"


def test_calendar_timeout_fails_closed(services, db_session, calendar):
    entry = create_entry(db_session)
    calendar.timeout = True

    with pytest.raises(UpstreamFailure):
        _issue(services, entry.id)

    fresh = reload(db_session, entry.id)
    assert fresh.status == "waiting"
    assert fresh.offer_token_hash is None


def test_delivery_failure_keeps_offer(services, db_session, notifier):
    entry = create_entry(db_session)
    notifier.raise_error = True

    result = _issue(services, entry.id)

    assert result.issued
    assert result.notified is False
    assert reload(db_session, entry.id).status == "notified"


def test_offer_is_audited(services, db_session):
    entry = create_entry(db_session)
    _issue(services, entry.id, channel="operator")

    events = services.audit.get_entry_events(waitlist_entry_id=entry.id)
    assert events[-1].reason == "offer_created"
    assert events[-1].channel == "operator"
    assert events[-1].event_data["trigger"] == "manual_notify"


def test_select_candidates_excludes_incompatible_windows(services, db_session):
    base = utcnow() - timedelta(hours=1)
    morning = create_entry(
        db_session,
        customer_name="Morning",
        preferred_time_start=time(8, 0),
        preferred_time_end=time(9, 30),
        created_at=base,
    )
    flexible = create_entry(db_session, customer_name="Flexible", created_at=base + timedelta(minutes=1))
    ten_to_noon = create_entry(
        db_session,
        customer_name="Late morning",
        preferred_time_start=time(10, 0),
        preferred_time_end=time(12, 0),
        created_at=base + timedelta(minutes=2),
    )
    start, end = slot_on(hour=10)

    candidates = services.issuer.select_candidates(
        salon_id=SALON_ID, service_id=SERVICE_ID, slot_start=start, slot_end=end
    )

    ids = [c.id for c in candidates]
    assert morning.id not in ids
    assert ids == [flexible.id, ten_to_noon.id]
