from datetime import timedelta, time

from app.db.types import utcnow
from app.services.calendar_client import Slot
from app.services.offer_release import ReleasedSlot
from tests.utils.waitlist import SALON_ID, SERVICE_ID, create_entry, reload, slot_on


def _fifo_entries(db_session, count=3):
    base = utcnow() - timedelta(hours=2)
    return [
        create_entry(db_session, customer_name=f"Customer {i}", created_at=base + timedelta(minutes=i))
        for i in range(1, count + 1)
    ]


def _cancelled(services, slot=None, **kwargs):
    start, end = slot or slot_on()
    return services.coordinator.on_booking_cancelled(
        salon_id=SALON_ID,
        service_id=SERVICE_ID,
        on_date=start.date(),
        slot_start=start,
        slot_end=end,
        **kwargs,
    )


def test_oldest_entry_gets_the_offer(services, db_session):
    t1, t2, t3 = _fifo_entries(db_session)

    summary = _cancelled(services)

    assert summary.offers_issued == 1
    assert summary.candidates_considered == 1
    assert reload(db_session, t1.id).status == "notified"
    assert reload(db_session, t2.id).status == "waiting"
    assert reload(db_session, t3.id).status == "waiting"


def test_slot_unavailable_moves_to_next_candidate(services, db_session, calendar):
    t1, t2, t3 = _fifo_entries(db_session)
    calendar.availability_script = [False]

    summary = _cancelled(services)

    assert summary.offers_issued == 1
    assert summary.candidates_considered == 2
    assert reload(db_session, t1.id).status == "waiting"
    assert reload(db_session, t2.id).status == "notified"
    assert reload(db_session, t3.id).status == "waiting"


def test_calendar_timeout_on_one_candidate_is_counted_not_raised(services, db_session, calendar):
    t1, t2, _ = _fifo_entries(db_session)
    calendar.availability_script = ["timeout"]

    summary = _cancelled(services)

    assert summary.errors == 1
    assert summary.offers_issued == 1
    assert reload(db_session, t1.id).status == "waiting"
    assert reload(db_session, t2.id).status == "notified"


def test_no_candidate_accepts_means_no_offer(services, db_session, calendar):
    _fifo_entries(db_session, count=2)
    calendar.availability_script = [False, False]

    summary = _cancelled(services)

    assert summary.offers_issued == 0
    assert summary.candidates_considered == 2


def test_incompatible_windows_are_not_considered(services, db_session):
    create_entry(db_session, preferred_time_start=time(15, 0), preferred_time_end=time(18, 0))

    summary = _cancelled(services, slot=slot_on(hour=10))

    assert summary.offers_issued == 0
    assert summary.candidates_considered == 0


def test_employee_specific_slot_skips_other_employees(services, db_session):
    base = utcnow() - timedelta(hours=1)
    other = create_entry(db_session, employee_id="emp_other", created_at=base)
    anyone = create_entry(db_session, created_at=base + timedelta(minutes=1))

    summary = _cancelled(services, employee_id="emp_1")

    assert summary.offers_issued == 1
    assert reload(db_session, other.id).status == "waiting"
    fresh = reload(db_session, anyone.id)
    assert fresh.status == "notified"
    assert fresh.offer_employee_id == "emp_1"


def test_asks_calendar_for_slot_when_not_given(services, db_session, calendar):
    entry = create_entry(db_session)
    start, end = slot_on(hour=11)
    calendar.free_slots = [Slot(start=start, end=end, employee_id="emp_1")]

    summary = services.coordinator.on_booking_cancelled(
        salon_id=SALON_ID, service_id=SERVICE_ID, on_date=start.date()
    )

    assert summary.offers_issued == 1
    fresh = reload(db_session, entry.id)
    assert fresh.offer_slot_start == start
    assert fresh.offer_trigger == "cancellation"


def test_no_free_slot_returns_zero_counts(services, db_session):
    create_entry(db_session)

    summary = services.coordinator.on_booking_cancelled(
        salon_id=SALON_ID, service_id=SERVICE_ID, on_date=slot_on()[0].date()
    )

    assert (summary.offers_issued, summary.candidates_considered, summary.errors) == (0, 0, 0)


def test_reoffer_released_slot_uses_chain_trigger(services, db_session):
    entry = create_entry(db_session)
    start, end = slot_on()

    summary = services.coordinator.reoffer_released_slot(
        ReleasedSlot(salon_id=SALON_ID, service_id=SERVICE_ID, slot_start=start, slot_end=end)
    )

    assert summary.offers_issued == 1
    assert reload(db_session, entry.id).offer_trigger == "lifecycle_chain"


def test_reoffer_skips_slots_in_the_past(services, db_session):
    create_entry(db_session)
    start, end = slot_on(days_ahead=-1)

    summary = services.coordinator.reoffer_released_slot(
        ReleasedSlot(salon_id=SALON_ID, service_id=SERVICE_ID, slot_start=start, slot_end=end)
    )

    assert summary.offers_issued == 0
