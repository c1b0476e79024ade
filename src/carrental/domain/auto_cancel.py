"""Auto-cancellation of unpaid bank-transfer bookings.

Bank-transfer bookings not fully paid by two days before rental start are
cancelled in one batch update. The run is guarded by a named lease so only
one instance sweeps per interval.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable

from carrental.domain.rules import auto_cancel_deadline
from carrental.infra.leases import LeaseLock
from carrental.infra.stores import BookingStore
from carrental.infra.time import utc_today
from carrental.observability.correlation import correlation_scope, get_correlation_id
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCK_NAME = "cancelUnpaidBankTransferBookings"
MIN_HOLD = timedelta(minutes=5)
MAX_HOLD = timedelta(minutes=30)


def cancel_unpaid_bank_transfers(*, store: BookingStore, today: date) -> int:
    """Cancel every eligible booking starting on or before today + 2 days.

    The batch update re-checks eligibility, so a booking paid between the
    scan and the update stays untouched.

    Returns:
        Number of bookings cancelled.
    """
    deadline = auto_cancel_deadline(today)
    booking_ids = store.find_auto_cancel_ids(deadline)

    if not booking_ids:
        logger.info(
            "no unpaid bank transfer bookings to cancel",
            extra={"extra_fields": safe_log_context(deadline=deadline)},
        )
        return 0

    cancelled = store.batch_cancel(booking_ids, deadline)

    logger.info(
        "unpaid bank transfer bookings cancelled",
        extra={
            "extra_fields": safe_log_context(
                deadline=deadline,
                candidates=len(booking_ids),
                cancelled=cancelled,
            )
        },
    )
    return cancelled


def run_auto_cancel_job(
    *,
    store: BookingStore,
    lease: LeaseLock,
    clock: Callable[[], date] = utc_today,
) -> int | None:
    """Scheduled entry point: sweep under the job lease.

    Returns:
        Number cancelled, or None if another instance holds the lease.
    """
    with correlation_scope(get_correlation_id() or None):
        if not lease.acquire(LOCK_NAME, min_hold=MIN_HOLD, max_hold=MAX_HOLD):
            logger.info(
                "auto-cancel skipped, lease held elsewhere",
                extra={"extra_fields": safe_log_context(lock=LOCK_NAME)},
            )
            return None

        try:
            return cancel_unpaid_bank_transfers(store=store, today=clock())
        finally:
            lease.release(LOCK_NAME, min_hold=MIN_HOLD)
