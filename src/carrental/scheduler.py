"""In-process scheduler for the auto-cancellation sweep.

Every instance runs the job on the same interval; the job lease makes sure
only one of them actually sweeps per interval.

Config:
    AUTO_CANCEL_INTERVAL_SECONDS: Interval between runs (default 3600).
"""

from __future__ import annotations

import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from carrental.domain.auto_cancel import LOCK_NAME, run_auto_cancel_job
from carrental.infra.leases import get_lease_lock
from carrental.infra.stores import get_booking_store
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

logger = get_logger(__name__)

JOB_ID = "auto_cancel_unpaid_bank_transfers"

_scheduler: BackgroundScheduler | None = None


def auto_cancel_interval_seconds() -> int:
    return int(os.environ.get("AUTO_CANCEL_INTERVAL_SECONDS", "3600"))


def run_scheduled_auto_cancel() -> None:
    """Job body. Errors are logged so the scheduler keeps the job alive."""
    try:
        run_auto_cancel_job(store=get_booking_store(), lease=get_lease_lock())
    except Exception as e:
        logger.error(
            "scheduled auto-cancel failed",
            extra={"extra_fields": safe_log_context(job=LOCK_NAME, error=str(e))},
            exc_info=True,
        )


def start_scheduler() -> BackgroundScheduler:
    """Start the background scheduler (idempotent)."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("scheduler already running")
        return _scheduler

    interval = auto_cancel_interval_seconds()
    _scheduler = BackgroundScheduler(timezone="UTC")
    _scheduler.add_job(
        run_scheduled_auto_cancel,
        IntervalTrigger(seconds=interval),
        id=JOB_ID,
        name="Cancel unpaid bank transfer bookings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()

    logger.info(
        "scheduler started",
        extra={"extra_fields": safe_log_context(job=JOB_ID, interval_seconds=interval)},
    )
    return _scheduler


def stop_scheduler() -> None:
    global _scheduler

    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("scheduler stopped")
