# app/api/v1/endpoints/internal_waitlist.py
from fastapi import APIRouter, Depends, HTTPException, status

from app.api import deps
from app.core.exceptions import UpstreamFailure
from app.schemas.waitlist import (
    BookingCancelledNotification,
    CancellationHookResponse,
    LifecycleSweepResponse,
)
from app.services.waitlist_services import WaitlistServices

router = APIRouter(tags=["Internal"])


@router.post("/internal/waitlist/booking-cancelled", response_model=CancellationHookResponse)
def booking_cancelled(
    notification: BookingCancelledNotification,
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    api_key: str = Depends(deps.get_internal_api_key),
):
    """
    Called by the booking service when a booking is cancelled. Offers the
    freed slot to the first eligible waitlisted customer.
    """
    try:
        summary = services.coordinator.on_booking_cancelled(
            salon_id=notification.salon_id,
            service_id=notification.service_id,
            on_date=notification.date,
            employee_id=notification.employee_id,
            slot_start=notification.slot_start,
            slot_end=notification.slot_end,
        )
    except UpstreamFailure:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking calendar is unavailable, please retry",
        )
    return CancellationHookResponse(
        offers_issued=summary.offers_issued,
        candidates_considered=summary.candidates_considered,
        errors=summary.errors,
    )


@router.post("/internal/waitlist/lifecycle-sweep", response_model=LifecycleSweepResponse)
def lifecycle_sweep(
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    api_key: str = Depends(deps.get_internal_api_key),
):
    """Run the waitlist reconciliation sweep once (external cron trigger)."""
    summary = services.reconciler.run_sweep()
    return LifecycleSweepResponse(
        expired_offers=summary.expired_offers,
        cooldown_reactivations=summary.cooldown_reactivations,
        stale_entries_expired=summary.stale_entries_expired,
        reminders_sent=summary.reminders_sent,
        errors=summary.errors,
    )
