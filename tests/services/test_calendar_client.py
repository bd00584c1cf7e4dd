from datetime import date, datetime, timezone

import httpx
import pytest

from app.core.exceptions import UpstreamFailure
from app.services.calendar_client import HttpCalendarClient

START = datetime(2030, 5, 1, 10, 0, tzinfo=timezone.utc)
END = datetime(2030, 5, 1, 10, 30, tzinfo=timezone.utc)


def _client(handler):
    return HttpCalendarClient(base_url="http://calendar.test", transport=httpx.MockTransport(handler))


def test_is_slot_free_sends_internal_key():
    seen = {}

    def handler(request: httpx.Request):
        seen["key"] = request.headers.get("X-Internal-Api-Key")
        seen["path"] = request.url.path
        return httpx.Response(200, json={"free": True})

    assert _client(handler).is_slot_free(
        salon_id="salon_1", service_id="svc_1", slot_start=START, slot_end=END
    ) is True
    assert seen["key"] == "test-internal-key"
    assert seen["path"] == "/internal/calendar/salon_1/slot-availability"


def test_find_matching_free_slot_parses_slot():
    def handler(request: httpx.Request):
        assert request.url.params["date"] == "2030-05-01"
        return httpx.Response(
            200,
            json={"slot": {"start": START.isoformat(), "end": END.isoformat(), "employee_id": "emp_1"}},
        )

    slot = _client(handler).find_matching_free_slot(
        salon_id="salon_1", service_id="svc_1", on_date=date(2030, 5, 1)
    )

    assert slot.start == START
    assert slot.end == END
    assert slot.employee_id == "emp_1"


def test_find_matching_free_slot_none():
    slot = _client(lambda request: httpx.Response(200, json={"slot": None})).find_matching_free_slot(
        salon_id="salon_1", service_id="svc_1", on_date=date(2030, 5, 1)
    )
    assert slot is None


def test_convert_offer_uses_idempotency_key():
    seen = {}

    def handler(request: httpx.Request):
        seen["idempotency"] = request.headers.get("Idempotency-Key")
        return httpx.Response(201, json={"booking_id": "bkg_1"})

    result = _client(handler).convert_offer_to_booking(
        salon_id="salon_1",
        service_id="svc_1",
        slot_start=START,
        slot_end=END,
        employee_id=None,
        customer={"name": "Ada"},
        idempotency_key="hash_abc",
    )

    assert result.succeeded
    assert result.booking_id == "bkg_1"
    assert seen["idempotency"] == "hash_abc"


def test_convert_offer_slot_taken():
    result = _client(lambda request: httpx.Response(409, json={"reason": "slot_taken"})).convert_offer_to_booking(
        salon_id="salon_1",
        service_id="svc_1",
        slot_start=START,
        slot_end=END,
        employee_id=None,
        customer={},
        idempotency_key="hash_abc",
    )

    assert not result.succeeded
    assert result.reason == "slot_taken"


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: (_ for _ in ()).throw(httpx.ReadTimeout("timed out", request=request)),
        lambda request: (_ for _ in ()).throw(httpx.ConnectError("refused", request=request)),
        lambda request: httpx.Response(502),
    ],
    ids=["timeout", "connect_error", "bad_gateway"],
)
def test_failures_raise_upstream_failure(handler):
    with pytest.raises(UpstreamFailure) as exc_info:
        _client(handler).is_slot_free(salon_id="salon_1", service_id="svc_1", slot_start=START, slot_end=END)
    assert exc_info.value.service == "calendar"


def _convert(client):
    return client.convert_offer_to_booking(
        salon_id="salon_1",
        service_id="svc_1",
        slot_start=START,
        slot_end=END,
        employee_id=None,
        customer={},
        idempotency_key="hash_abc",
    )


def test_conflict_with_plain_text_body_is_slot_taken():
    result = _convert(_client(lambda request: httpx.Response(409, text="Conflict")))

    assert not result.succeeded
    assert result.reason == "slot_taken"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(201, json={}),
        httpx.Response(200, text="<html>ok</html>"),
        httpx.Response(201, json=["bkg_1"]),
    ],
    ids=["missing_booking_id", "not_json", "not_an_object"],
)
def test_unreadable_booking_response_raises_upstream_failure(response):
    with pytest.raises(UpstreamFailure):
        _convert(_client(lambda request: response))


def test_malformed_free_slot_raises_upstream_failure():
    client = _client(lambda request: httpx.Response(200, json={"slot": {"start": "soon"}}))

    with pytest.raises(UpstreamFailure):
        client.find_matching_free_slot(salon_id="salon_1", service_id="svc_1", on_date=date(2030, 5, 1))


def test_free_slot_without_offset_is_utc():
    client = _client(
        lambda request: httpx.Response(
            200, json={"slot": {"start": "2030-05-01T10:00:00", "end": "2030-05-01T10:30:00"}}
        )
    )

    slot = client.find_matching_free_slot(salon_id="salon_1", service_id="svc_1", on_date=date(2030, 5, 1))

    assert slot.start == START
    assert slot.end.tzinfo is not None
