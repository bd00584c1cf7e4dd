# tests/utils/fakes.py
"""In-memory stand-ins for the calendar and notifier collaborators."""

import uuid
from typing import Optional, Callable

from app.core.exceptions import UpstreamFailure
from app.services.calendar_client import Calendar, Slot, BookingConversion
from app.services.notifier import Notifier


def _overlaps(a_start, a_end, b_start, b_end) -> bool:
    return a_start < b_end and b_start < a_end


class FakeCalendar(Calendar):
    """
    Atomic, idempotent booking conversion over an in-memory list of bookings.

    Set `timeout = True` to make every call fail like an unreachable service.
    """

    def __init__(self):
        self.free_slots: list[Slot] = []
        self.taken: list[tuple] = []  # (employee_id, start, end) booked outside the waitlist
        self.bookings: dict[str, tuple] = {}  # idempotency_key -> (booking_id, employee_id, start, end)
        self.timeout = False
        self.availability_checks = 0
        # Scripted answers for the next is_slot_free calls: True, False or "timeout"
        self.availability_script: list = []
        self.conversion_calls = 0
        self.before_convert: Optional[Callable[[], None]] = None

    def _check_reachable(self):
        if self.timeout:
            raise UpstreamFailure("calendar", "timeout")

    def _is_taken(self, employee_id, start, end) -> bool:
        ranges = list(self.taken) + [(b[1], b[2], b[3]) for b in self.bookings.values()]
        for other_employee, other_start, other_end in ranges:
            same_chair = employee_id is None or other_employee is None or employee_id == other_employee
            if same_chair and _overlaps(start, end, other_start, other_end):
                return True
        return False

    def take(self, start, end, employee_id=None):
        """Book a slot directly, as another customer would."""
        self.taken.append((employee_id, start, end))

    def find_matching_free_slot(self, *, salon_id, service_id, on_date, employee_id=None):
        self._check_reachable()
        for slot in self.free_slots:
            if slot.start.date() == on_date and not self._is_taken(slot.employee_id, slot.start, slot.end):
                return slot
        return None

    def is_slot_free(self, *, salon_id, service_id, slot_start, slot_end, employee_id=None):
        self._check_reachable()
        self.availability_checks += 1
        if self.availability_script:
            answer = self.availability_script.pop(0)
            if answer == "timeout":
                raise UpstreamFailure("calendar", "timeout")
            return answer
        return not self._is_taken(employee_id, slot_start, slot_end)

    def convert_offer_to_booking(
        self, *, salon_id, service_id, slot_start, slot_end, employee_id, customer, idempotency_key
    ):
        self._check_reachable()
        self.conversion_calls += 1
        if self.before_convert:
            self.before_convert()
        if idempotency_key in self.bookings:
            return BookingConversion(booking_id=self.bookings[idempotency_key][0])
        if self._is_taken(employee_id, slot_start, slot_end):
            return BookingConversion(reason="slot_taken")
        booking_id = f"bkg_{uuid.uuid4().hex[:8]}"
        self.bookings[idempotency_key] = (booking_id, employee_id, slot_start, slot_end)
        return BookingConversion(booking_id=booking_id)


class FakeNotifier(Notifier):
    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.raise_error = False
        self.sent: list[tuple] = []

    def send(self, contact, template, context) -> bool:
        if self.raise_error:
            raise RuntimeError("provider down")
        self.sent.append((contact, template, context))
        return self.deliver
