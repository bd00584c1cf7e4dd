# app/services/calendar_client.py
"""
Client for the booking calendar service.

The calendar owns availability and bookings. This service only asks whether
a slot is free and asks the calendar to turn an accepted offer into a
booking. Conversion is atomic on the calendar's side and keyed by an
idempotency key, so a retried claim can never create two bookings.

Timeouts and transport errors are raised as UpstreamFailure. Callers fail
closed: no offer is issued and no claim is resolved without an answer.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import UpstreamFailure
from app.db.types import as_utc

logger = logging.getLogger(__name__)


@dataclass
class Slot:
    start: datetime
    end: datetime
    employee_id: Optional[str] = None


@dataclass
class BookingConversion:
    """Outcome of converting an offer: a booking id, or the reason there is none."""

    booking_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.booking_id is not None


class Calendar:
    """Calendar operations the waitlist depends on."""

    def find_matching_free_slot(
        self,
        *,
        salon_id: str,
        service_id: str,
        on_date: date,
        employee_id: Optional[str] = None,
    ) -> Optional[Slot]:
        raise NotImplementedError

    def is_slot_free(
        self,
        *,
        salon_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
        employee_id: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError

    def convert_offer_to_booking(
        self,
        *,
        salon_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
        employee_id: Optional[str],
        customer: dict,
        idempotency_key: str,
    ) -> BookingConversion:
        raise NotImplementedError


class HttpCalendarClient(Calendar):
    """Calendar backed by the booking service's internal HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.CALENDAR_SERVICE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CALENDAR_TIMEOUT_SECONDS
        self._transport = transport

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"X-Internal-Api-Key": settings.INTERNAL_API_KEY, **kwargs.pop("headers", {})}
        try:
            with httpx.Client(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling calendar {method} {path}")
            raise UpstreamFailure("calendar", f"timeout: {e}") from e
        except httpx.TransportError as e:
            logger.error(f"Transport error calling calendar {method} {path}: {e}")
            raise UpstreamFailure("calendar", str(e)) from e

        if response.status_code >= 500:
            logger.error(f"Calendar {method} {path} returned HTTP {response.status_code}")
            raise UpstreamFailure("calendar", f"HTTP {response.status_code}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamFailure("calendar", f"unreadable response: {e}") from e
        if not isinstance(body, dict):
            raise UpstreamFailure("calendar", "unexpected response body")
        return body

    def find_matching_free_slot(
        self,
        *,
        salon_id: str,
        service_id: str,
        on_date: date,
        employee_id: Optional[str] = None,
    ) -> Optional[Slot]:
        params = {"service_id": service_id, "date": on_date.isoformat()}
        if employee_id:
            params["employee_id"] = employee_id
        response = self._request("GET", f"/internal/calendar/{salon_id}/free-slots", params=params)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise UpstreamFailure("calendar", f"HTTP {response.status_code}")

        data = self._json(response).get("slot")
        if not data:
            return None
        try:
            return Slot(
                start=as_utc(datetime.fromisoformat(data["start"])),
                end=as_utc(datetime.fromisoformat(data["end"])),
                employee_id=data.get("employee_id"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamFailure("calendar", f"malformed slot: {e}") from e

    def is_slot_free(
        self,
        *,
        salon_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
        employee_id: Optional[str] = None,
    ) -> bool:
        response = self._request(
            "POST",
            f"/internal/calendar/{salon_id}/slot-availability",
            json={
                "service_id": service_id,
                "employee_id": employee_id,
                "slot_start": slot_start.isoformat(),
                "slot_end": slot_end.isoformat(),
            },
        )
        if response.status_code != 200:
            raise UpstreamFailure("calendar", f"HTTP {response.status_code}")
        return bool(self._json(response).get("free"))

    def convert_offer_to_booking(
        self,
        *,
        salon_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
        employee_id: Optional[str],
        customer: dict,
        idempotency_key: str,
    ) -> BookingConversion:
        response = self._request(
            "POST",
            f"/internal/calendar/{salon_id}/bookings/from-waitlist",
            headers={"Idempotency-Key": idempotency_key},
            json={
                "service_id": service_id,
                "employee_id": employee_id,
                "slot_start": slot_start.isoformat(),
                "slot_end": slot_end.isoformat(),
                "customer": customer,
            },
        )
        if response.status_code in (200, 201):
            booking_id = self._json(response).get("booking_id")
            if not booking_id:
                raise UpstreamFailure("calendar", "booking created without an id")
            return BookingConversion(booking_id=str(booking_id))
        if response.status_code in (409, 422):
            # The refusal stands even when the body is not JSON.
            try:
                body = response.json()
            except ValueError:
                body = None
            reason = body.get("reason", "slot_taken") if isinstance(body, dict) else "slot_taken"
            logger.info(f"Calendar refused waitlist booking for salon {salon_id}: {reason}")
            return BookingConversion(reason=reason)
        raise UpstreamFailure("calendar", f"HTTP {response.status_code}")
