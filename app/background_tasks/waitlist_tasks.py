# app/background_tasks/waitlist_tasks.py
"""
Background tasks for the waitlist.

- run_waitlist_sweep(): every minute, from the scheduler
- reoffer_released_slot(): after a decline or withdrawal, queued by the
  request that freed the slot and run once the response is sent
"""

import logging
from typing import Optional

from app.db.session import SessionLocal
from app.services.calendar_client import Calendar
from app.services.notifier import Notifier
from app.services.offer_release import ReleasedSlot
from app.services.waitlist_services import build_waitlist_services

logger = logging.getLogger(__name__)


def run_waitlist_sweep():
    """
    Background task: expire lapsed offers, clear elapsed cooldowns, expire
    stale entries and send offer reminders.
    """
    db = SessionLocal()
    try:
        return build_waitlist_services(db).reconciler.run_sweep()
    except Exception as e:
        logger.error(f"Error in run_waitlist_sweep task: {e}", exc_info=True)
        db.rollback()
        return None
    finally:
        db.close()


def reoffer_released_slot(
    released: ReleasedSlot,
    session_factory=SessionLocal,
    calendar: Optional[Calendar] = None,
    notifier: Optional[Notifier] = None,
):
    """Background task: offer a freed slot to the next waiting candidate."""
    db = session_factory()
    try:
        services = build_waitlist_services(db, calendar=calendar, notifier=notifier)
        summary = services.coordinator.reoffer_released_slot(released)
        logger.info(
            f"Re-offered released slot for salon {released.salon_id}: "
            f"{summary.offers_issued} offer(s), {summary.candidates_considered} candidate(s)"
        )
        return summary
    except Exception as e:
        logger.error(
            f"Error re-offering released slot for salon {released.salon_id}: {e}", exc_info=True
        )
        db.rollback()
        return None
    finally:
        db.close()
