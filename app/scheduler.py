# app/scheduler.py
"""
Background scheduler for the waitlist lifecycle sweep.

The same sweep is reachable through the internal HTTP endpoint, so an
external cron can drive it instead (WAITLIST_SCHEDULER_ENABLED=false).
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from app.background_tasks.waitlist_tasks import run_waitlist_sweep

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    exc = event.exception
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        event.job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler():
    """
    Initialize the background scheduler.

    Called once when the application starts up.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60
        }
    )

    scheduler.add_job(
        func=run_waitlist_sweep,
        trigger=IntervalTrigger(minutes=1),
        id='waitlist_lifecycle_sweep',
        name='Waitlist Lifecycle Sweep',
        replace_existing=True
    )
    logger.info("Scheduled job: waitlist_lifecycle_sweep (every 1 minute)")

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    return scheduler


def start_scheduler():
    global scheduler

    if scheduler is None:
        init_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Background scheduler started")


def shutdown_scheduler():
    global scheduler

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
    scheduler = None
