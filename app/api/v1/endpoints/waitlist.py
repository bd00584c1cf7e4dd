# app/api/v1/endpoints/waitlist.py
"""
Waitlist endpoints for salon staff, the public booking site and customers.

Staff endpoints require a JWT whose organisation is the salon. Claim
endpoints are unauthenticated: the offer token is the credential.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, Response, BackgroundTasks, Query

from app.api import deps
from app.background_tasks.waitlist_tasks import reoffer_released_slot
from app.core.config import settings
from app.core.exceptions import UpstreamFailure
from app.core.limiter import limiter
from app.schemas.token import TokenPayload
from app.schemas.waitlist import (
    WaitlistEntryCreate,
    WaitlistEntryResponse,
    WaitlistJoinResponse,
    WaitlistEntryListResponse,
    WaitlistCancelRequest,
    WaitlistStatus,
    NotifyRequest,
    NotifyResponse,
    ClaimRequest,
    ClaimResponse,
    ClaimAction,
    ClaimChannel,
    ClaimStatus,
    IssueOutcome,
)
from app.services.calendar_client import Calendar
from app.services.claim_processor import ClaimResult
from app.services.notifier import Notifier
from app.services.offer_release import ReleasedSlot
from app.services.waitlist_services import WaitlistServices

router = APIRouter(tags=["Waitlist"])
logger = logging.getLogger(__name__)

CLAIM_MESSAGES = {
    ClaimStatus.ACCEPTED: "Your booking is confirmed.",
    ClaimStatus.DECLINED: "You have declined the offer and remain on the waitlist.",
    ClaimStatus.EXPIRED: "This offer is no longer available.",
    ClaimStatus.INVALID: "This offer is no longer available.",
}

ISSUE_ERROR_CODES = {
    IssueOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    IssueOutcome.CONFLICT: status.HTTP_409_CONFLICT,
    IssueOutcome.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    IssueOutcome.INVALID_SLOT: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _upstream_unavailable(e: UpstreamFailure) -> HTTPException:
    logger.warning(f"Upstream failure: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Booking calendar is unavailable, please retry",
    )


def _queue_reoffer(
    background_tasks: BackgroundTasks,
    released: Optional[ReleasedSlot],
    session_factory,
    calendar: Calendar,
    notifier: Notifier,
) -> None:
    if released is None or not settings.WAITLIST_CHAIN_ON_DECLINE:
        return
    background_tasks.add_task(
        reoffer_released_slot,
        released,
        session_factory=session_factory,
        calendar=calendar,
        notifier=notifier,
    )


# ==================== Staff Endpoints ====================

@router.post(
    "/salons/{salon_id}/waitlist",
    response_model=WaitlistJoinResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_waitlist_entry(
    salon_id: str,
    entry_in: WaitlistEntryCreate,
    response: Response,
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Add a customer to the salon's waitlist.

    If the customer already has an active entry for the same service and
    date, that entry is returned with `already_joined=true` (HTTP 200).
    """
    deps.require_salon_access(salon_id, current_user)
    result = services.entries.add_to_waitlist(salon_id=salon_id, obj_in=entry_in, channel="operator")
    if result.already_joined:
        response.status_code = status.HTTP_200_OK
    return WaitlistJoinResponse(
        entry=WaitlistEntryResponse.model_validate(result.entry),
        already_joined=result.already_joined,
    )


@router.get("/salons/{salon_id}/waitlist", response_model=WaitlistEntryListResponse)
def list_waitlist_entries(
    salon_id: str,
    status_filter: Optional[WaitlistStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """List the salon's waitlist, oldest first."""
    deps.require_salon_access(salon_id, current_user)
    entries = services.entries.list_entries(
        salon_id=salon_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
    )
    return WaitlistEntryListResponse(
        waitlist_entries=[WaitlistEntryResponse.model_validate(e) for e in entries],
        total=len(entries),
    )


@router.post("/salons/{salon_id}/waitlist/{entry_id}/cancel", response_model=WaitlistEntryResponse)
def cancel_waitlist_entry(
    salon_id: str,
    entry_id: str,
    background_tasks: BackgroundTasks,
    cancel_in: Optional[WaitlistCancelRequest] = None,
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    calendar: Calendar = Depends(deps.get_calendar),
    notifier: Notifier = Depends(deps.get_notifier),
    session_factory=Depends(deps.get_session_factory),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Withdraw a waitlist entry. Terminal.

    **Errors**:
    - 404: Entry not found in this salon
    - 409: Entry already resolved, or its offer is being claimed right now
    """
    deps.require_salon_access(salon_id, current_user)
    result = services.entries.cancel_entry(
        salon_id=salon_id,
        entry_id=entry_id,
        reason=cancel_in.reason if cancel_in else None,
    )
    if result.status == "not_found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.message)
    if result.status == "conflict":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)

    _queue_reoffer(background_tasks, result.released_slot, session_factory, calendar, notifier)
    return WaitlistEntryResponse.model_validate(
        services.entries.get_entry(salon_id=salon_id, entry_id=entry_id)
    )


@router.post("/salons/{salon_id}/waitlist/{entry_id}/notify", response_model=NotifyResponse)
def notify_waitlist_entry(
    salon_id: str,
    entry_id: str,
    notify_in: NotifyRequest,
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Offer a specific slot to a waiting customer.

    **Errors**:
    - 404: Entry not found in this salon
    - 409: A pending offer already exists, the entry is not waiting, or the slot is no longer free
    - 422: slot_end is not after slot_start
    - 503: Booking calendar unavailable; nothing was changed
    """
    deps.require_salon_access(salon_id, current_user)
    try:
        result = services.issuer.issue_offer(
            salon_id=salon_id,
            entry_id=entry_id,
            slot_start=notify_in.slot_start,
            slot_end=notify_in.slot_end,
            trigger=notify_in.trigger,
            employee_id=notify_in.employee_id,
            channel="operator",
        )
    except UpstreamFailure as e:
        raise _upstream_unavailable(e)

    if result.outcome != IssueOutcome.ISSUED:
        raise HTTPException(status_code=ISSUE_ERROR_CODES[result.outcome], detail=result.message)

    return NotifyResponse(
        entry_id=entry_id,
        notified=result.notified,
        offer_token=result.offer_token,
        expires_at=result.expires_at,
    )


# ==================== Public Endpoints ====================

@router.post(
    "/public/salons/{salon_id}/waitlist",
    response_model=WaitlistJoinResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.PUBLIC_WAITLIST_RATE_LIMIT)
def join_waitlist_public(
    salon_id: str,
    entry_in: WaitlistEntryCreate,
    request: Request,
    response: Response,
    services: WaitlistServices = Depends(deps.get_waitlist_services),
):
    """Public booking site intake when no slot could be booked."""
    result = services.entries.add_to_waitlist(salon_id=salon_id, obj_in=entry_in, channel="api")
    if result.already_joined:
        response.status_code = status.HTTP_200_OK
    return WaitlistJoinResponse(
        entry=WaitlistEntryResponse.model_validate(result.entry),
        already_joined=result.already_joined,
    )


# ==================== Claim Endpoints ====================

def _claim(
    services: WaitlistServices,
    background_tasks: BackgroundTasks,
    *,
    token: str,
    action: ClaimAction,
    channel: ClaimChannel,
    session_factory,
    calendar: Calendar,
    notifier: Notifier,
) -> ClaimResponse:
    try:
        result: ClaimResult = services.claims.resolve_claim(
            offer_token=token, action=action, channel=channel.value
        )
    except UpstreamFailure as e:
        raise _upstream_unavailable(e)

    if result.status == ClaimStatus.DECLINED:
        _queue_reoffer(background_tasks, result.released_slot, session_factory, calendar, notifier)

    return ClaimResponse(
        status=result.status,
        booking_id=result.booking_id,
        message=CLAIM_MESSAGES[result.status],
    )


@router.get("/waitlist/claim", response_model=ClaimResponse)
def claim_offer_link(
    background_tasks: BackgroundTasks,
    token: str = Query(..., min_length=16, max_length=256),
    action: ClaimAction = Query(ClaimAction.DECLINE),
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    calendar: Calendar = Depends(deps.get_calendar),
    notifier: Notifier = Depends(deps.get_notifier),
    session_factory=Depends(deps.get_session_factory),
):
    """
    One-click decline link from the offer SMS/email.

    Accepting goes through POST so link previews cannot book on the
    customer's behalf.
    """
    if action != ClaimAction.DECLINE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Accepting an offer requires POST /waitlist/claim",
        )
    return _claim(
        services,
        background_tasks,
        token=token,
        action=action,
        channel=ClaimChannel.LINK,
        session_factory=session_factory,
        calendar=calendar,
        notifier=notifier,
    )


@router.post("/waitlist/claim", response_model=ClaimResponse)
def claim_offer(
    claim_in: ClaimRequest,
    background_tasks: BackgroundTasks,
    services: WaitlistServices = Depends(deps.get_waitlist_services),
    calendar: Calendar = Depends(deps.get_calendar),
    notifier: Notifier = Depends(deps.get_notifier),
    session_factory=Depends(deps.get_session_factory),
):
    """
    Accept or decline a waitlist offer.

    **Errors**:
    - 503: Booking calendar unavailable; the offer stays open, retry
    """
    return _claim(
        services,
        background_tasks,
        token=claim_in.offer_token,
        action=claim_in.action,
        channel=claim_in.channel,
        session_factory=session_factory,
        calendar=calendar,
        notifier=notifier,
    )
