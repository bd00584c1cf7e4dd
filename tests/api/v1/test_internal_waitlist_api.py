from datetime import timedelta

from fastapi.testclient import TestClient

from app.db.types import utcnow
from app.models.waitlist_entry import WaitlistEntry
from tests.utils.auth import INTERNAL_HEADERS
from tests.utils.waitlist import SALON_ID, SERVICE_ID, create_entry, reload, slot_on


def _hook_payload(slot=None):
    start, end = slot or slot_on()
    return {
        "salon_id": SALON_ID,
        "service_id": SERVICE_ID,
        "date": start.date().isoformat(),
        "slot_start": start.isoformat(),
        "slot_end": end.isoformat(),
    }


def test_internal_endpoints_require_api_key(client: TestClient):
    assert client.post("/api/v1/internal/waitlist/booking-cancelled", json=_hook_payload()).status_code == 401
    assert client.post(
        "/api/v1/internal/waitlist/lifecycle-sweep", headers={"X-Internal-Api-Key": "wrong"}
    ).status_code == 401


def test_booking_cancelled_offers_slot(client: TestClient, db_session):
    entry = create_entry(db_session)

    response = client.post(
        "/api/v1/internal/waitlist/booking-cancelled", json=_hook_payload(), headers=INTERNAL_HEADERS
    )

    assert response.status_code == 200
    assert response.json() == {"offersIssued": 1, "candidatesConsidered": 1, "errors": 0}
    fresh = reload(db_session, entry.id)
    assert fresh.status == "notified"
    assert fresh.offer_trigger == "cancellation"


def test_booking_cancelled_requires_slot_pair(client: TestClient):
    payload = _hook_payload()
    del payload["slot_end"]

    response = client.post(
        "/api/v1/internal/waitlist/booking-cancelled", json=payload, headers=INTERNAL_HEADERS
    )

    assert response.status_code == 422


def test_booking_cancelled_calendar_down_is_503(client: TestClient, calendar):
    calendar.timeout = True
    payload = _hook_payload()
    del payload["slot_start"]
    del payload["slot_end"]

    response = client.post(
        "/api/v1/internal/waitlist/booking-cancelled", json=payload, headers=INTERNAL_HEADERS
    )

    assert response.status_code == 503


def test_lifecycle_sweep(client: TestClient, db_session):
    entry = create_entry(db_session)
    client.post("/api/v1/internal/waitlist/booking-cancelled", json=_hook_payload(), headers=INTERNAL_HEADERS)
    db_session.query(WaitlistEntry).filter(WaitlistEntry.id == entry.id).update(
        {"expires_at": utcnow() - timedelta(minutes=1)}
    )
    db_session.commit()

    response = client.post("/api/v1/internal/waitlist/lifecycle-sweep", headers=INTERNAL_HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "expiredOffers": 1,
        "cooldownReactivations": 0,
        "staleEntriesExpired": 0,
        "remindersSent": 0,
        "errors": 0,
    }
    assert reload(db_session, entry.id).status == "waiting"
