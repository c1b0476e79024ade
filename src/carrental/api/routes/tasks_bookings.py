"""Worker routes for booking maintenance jobs."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from carrental.api.task_auth import verify_task_auth
from carrental.domain.auto_cancel import LOCK_NAME, run_auto_cancel_job
from carrental.infra.leases import LeaseLock, get_lease_lock
from carrental.infra.stores import BookingStore, get_booking_store
from carrental.observability.correlation import get_correlation_id
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/bookings", tags=["tasks"])

logger = get_logger(__name__)


def _get_booking_store() -> BookingStore:
    """Get booking store (allows override in tests)."""
    return get_booking_store()


def _get_lease_lock() -> LeaseLock:
    """Get lease lock (allows override in tests)."""
    return get_lease_lock()


@router.post("/auto-cancel")
def handle_auto_cancel(request: Request) -> JSONResponse:
    """Trigger the unpaid bank-transfer sweep (for external schedulers).

    Returns:
        - {"status": "skipped"} - another instance holds the job lease
        - {"status": "ok", "cancelled": int}
    """
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    cancelled = run_auto_cancel_job(store=_get_booking_store(), lease=_get_lease_lock())

    if cancelled is None:
        return JSONResponse(status_code=200, content={"ok": True, "status": "skipped"})

    logger.info(
        "auto-cancel task completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id, job=LOCK_NAME, cancelled=cancelled
            )
        },
    )
    return JSONResponse(
        status_code=200,
        content={"ok": True, "status": "ok", "cancelled": cancelled},
    )
